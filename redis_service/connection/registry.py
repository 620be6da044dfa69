"""
Registry of named connections.

Names are reserved synchronously at call entry, before the first await, so
two concurrent creations under the same name cannot both proceed. A name is
committed to the active map only once its connection reaches CONNECTED,
and forgotten again when it reaches CLOSED.

Usage:
    registry = ConnectionRegistry()
    conn = await registry.create_connection("cache", {"port": 6380}, ["ExpireIfNoTTL"])
    await conn.run_script("ExpireIfNoTTL", ["session:1"], [60])

    result = await registry.close_all()
    for outcome in result.failed:
        ...
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from redis_service.config.logging import get_logger
from redis_service.config.settings import settings
from redis_service.connection.health import HealthCheckResult, check_connection
from redis_service.connection.lifecycle import Connection, ConnectionLifecycleController
from redis_service.connection.options import (
    ClusterOptions,
    ConnectionOptions,
    merge_cluster_options,
    merge_connection_options,
)
from redis_service.connection.transport import (
    TOPOLOGY_CLUSTER,
    TOPOLOGY_SINGLE,
    Transport,
    create_transport,
)
from redis_service.errors import CloseAllError, DuplicateNameError, NotFoundError
from redis_service.events.bus import EventBus
from redis_service.events.types import EventType, LifecycleEvent
from redis_service.scripts.registry import ScriptRegistry

logger = get_logger(__name__)

TransportFactory = Callable[[str, str, ConnectionOptions], Transport]


@dataclass(frozen=True, slots=True)
class CloseOutcome:
    """Result of shutting down one connection."""

    name: str
    ok: bool
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "ok": self.ok}
        if self.error is not None:
            data["error"] = str(self.error)
        return data


@dataclass(frozen=True, slots=True)
class CloseAllResult:
    """Per-connection outcomes of one ``close_all()`` call."""

    outcomes: tuple[CloseOutcome, ...] = ()

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failed(self) -> tuple[CloseOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if not outcome.ok)

    @property
    def closed(self) -> tuple[str, ...]:
        return tuple(outcome.name for outcome in self.outcomes if outcome.ok)

    def __len__(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class ConnectionRegistry:
    """
    Owns the named connections of one process (or one test).

    Args:
        scripts: Script definitions to bind from. Defaults to a fresh
            registry holding the built-in scripts.
        bus: Where lifecycle and transport events are published. Defaults
            to a new EventBus.
        transport_factory: ``(name, topology, options) -> Transport``.
            Defaults to the redis-py backed transports.
    """

    def __init__(
        self,
        scripts: ScriptRegistry | None = None,
        bus: EventBus | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.scripts = scripts if scripts is not None else ScriptRegistry()
        self.bus = bus if bus is not None else EventBus()
        self._transport_factory = transport_factory or create_transport
        self._reserved: set[str] = set()
        self._active: dict[str, Connection] = {}

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_connection(
        self,
        name: str,
        options: ConnectionOptions | Mapping[str, Any] | None = None,
        script_names: Iterable[str] = (),
    ) -> Connection:
        """
        Create a single-node connection and bind the requested scripts.

        Raises:
            DuplicateNameError: If the name is already reserved or active.
            InvalidTopologyError: If an option has an invalid value.
            MissingLoggerMethodError: If ``options.logger`` is incomplete.
            TransportError: If the server cannot be reached.
        """
        self._reserve(name)
        try:
            merged = merge_connection_options(options)
            return await self._open(name, TOPOLOGY_SINGLE, merged, script_names)
        finally:
            self._reserved.discard(name)

    async def create_cluster_connection(
        self,
        name: str,
        options: ClusterOptions | Mapping[str, Any] | None,
        script_names: Iterable[str] = (),
    ) -> Connection:
        """
        Create a cluster connection and bind the requested scripts.

        Raises:
            DuplicateNameError: If the name is already reserved or active.
            InvalidTopologyError: If ``nodes`` is missing, not a sequence,
                empty or malformed.
            MissingLoggerMethodError: If ``options.logger`` is incomplete.
            TransportError: If the cluster cannot be reached.
        """
        self._reserve(name)
        try:
            merged = merge_cluster_options(options)
            return await self._open(name, TOPOLOGY_CLUSTER, merged, script_names)
        finally:
            self._reserved.discard(name)

    def _reserve(self, name: str) -> None:
        if name in self._reserved or name in self._active:
            logger.warning("Connection name already in use", connection=name)
            raise DuplicateNameError(name)
        self._reserved.add(name)

    async def _open(
        self,
        name: str,
        topology: str,
        options: ConnectionOptions,
        script_names: Iterable[str],
    ) -> Connection:
        transport = self._transport_factory(name, topology, options)
        connection = Connection(name, topology, transport, options)
        controller = ConnectionLifecycleController(
            connection,
            self.bus,
            self.scripts,
            script_names,
            on_established=self._commit,
            on_closed=self._forget,
        )
        return await controller.open()

    def _commit(self, connection: Connection) -> None:
        self._active[connection.name] = connection

    def _forget(self, connection: Connection) -> None:
        # Only drop the record if it is still the one registered under the name
        if self._active.get(connection.name) is connection:
            del self._active[connection.name]

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_connection(self, name: str) -> Connection:
        """
        Get an active connection by name.

        Raises:
            NotFoundError: If no active connection has this name.
        """
        connection = self._active.get(name)
        if connection is None or not connection.is_active:
            raise NotFoundError(name)
        return connection

    def has_connection(self, name: str) -> bool:
        connection = self._active.get(name)
        return connection is not None and connection.is_active

    def list_connections(self) -> list[Connection]:
        return [conn for conn in self._active.values() if conn.is_active]

    @property
    def names(self) -> list[str]:
        return [conn.name for conn in self.list_connections()]

    def __len__(self) -> int:
        return len(self.list_connections())

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def close_connection(self, name: str) -> None:
        """
        Shut one connection down.

        Raises:
            NotFoundError: If no active connection has this name.
        """
        await self.get_connection(name).close()

    async def close_all(self, raise_on_error: bool = False) -> CloseAllResult:
        """
        Shut every currently active connection down concurrently.

        Every shutdown is attempted regardless of individual failures.
        Connections created after this call starts are left alone.

        Args:
            raise_on_error: Raise CloseAllError if any shutdown failed.

        Returns:
            One outcome per connection in the snapshot.
        """
        snapshot = list(self._active.values())
        self._publish(EventType.CLOSING_ALL_CONNECTIONS, count=len(snapshot))
        logger.info("Closing all connections", count=len(snapshot))

        results = await asyncio.gather(
            *(connection.close() for connection in snapshot),
            return_exceptions=True,
        )

        outcomes = []
        for connection, result in zip(snapshot, results):
            if isinstance(result, BaseException):
                outcomes.append(CloseOutcome(connection.name, ok=False, error=result))
                self._publish(EventType.ERROR, connection=connection.name, error=result)
                logger.error(
                    "Failed to close connection",
                    connection=connection.name,
                    error=str(result),
                )
            else:
                outcomes.append(CloseOutcome(connection.name, ok=True))
            self._forget(connection)

        result = CloseAllResult(tuple(outcomes))
        self._publish(
            EventType.ALL_CONNECTIONS_CLOSED,
            closed=list(result.closed),
            failed=[outcome.name for outcome in result.failed],
        )

        if raise_on_error and not result.ok:
            raise CloseAllError(result)
        return result

    # =========================================================================
    # Health
    # =========================================================================

    async def health_check(
        self,
        timeout: float | None = None,
        slow_ms: float | None = None,
    ) -> dict[str, HealthCheckResult]:
        """Check every active connection concurrently. See check_connection()."""
        timeout = timeout if timeout is not None else settings.health_check_timeout
        connections = self.list_connections()
        results = await asyncio.gather(
            *(check_connection(conn, timeout=timeout, slow_ms=slow_ms) for conn in connections)
        )
        return {conn.name: result for conn, result in zip(connections, results)}

    def _publish(
        self,
        event_type: EventType,
        connection: str | None = None,
        error: BaseException | None = None,
        **details: Any,
    ) -> None:
        self.bus.publish(
            event_type,
            LifecycleEvent(type=event_type, connection=connection, error=error, details=details),
        )
