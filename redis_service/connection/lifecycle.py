"""
Connection lifecycle management.

A Connection is the record handed to callers. The controller drives its
state machine from transport signals:

    INIT -> CONNECTING -> CONNECTED <-> RECONNECTING
                      \-> FAILED      \-> CLOSING -> CLOSED

Scripts are bound only once the transport reports ``ready`` for the first
time. Bound scripts are looked up in an explicit dispatch table and never
become attributes of the connection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

from redis.exceptions import ResponseError

from redis_service.config.logging import LoggerProxy, get_logger
from redis_service.errors import (
    ConnectionOfflineError,
    InvalidStateTransitionError,
    ScriptArityError,
    ScriptExecutionError,
    TransportError,
    UnknownScriptError,
)
from redis_service.events.forwarder import EventForwarder
from redis_service.events.types import EventType, LifecycleEvent, TransportSignal
from redis_service.scripts.definition import ScriptDefinition

if TYPE_CHECKING:
    from redis_service.connection.options import ConnectionOptions
    from redis_service.connection.transport import ScriptCallable, Transport
    from redis_service.events.bus import EventBus
    from redis_service.scripts.registry import ScriptRegistry


class ConnectionState(str, Enum):
    """States a connection moves through."""

    INIT = "init"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.INIT: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.FAILED}),
    ConnectionState.CONNECTED: frozenset({
        ConnectionState.RECONNECTING,
        ConnectionState.CLOSING,
        ConnectionState.CLOSED,
    }),
    ConnectionState.RECONNECTING: frozenset({
        ConnectionState.CONNECTED,
        ConnectionState.CLOSING,
        ConnectionState.CLOSED,
    }),
    ConnectionState.CLOSING: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
    ConnectionState.FAILED: frozenset(),
}

# States in which a connection is registered and reachable by name
ACTIVE_STATES: frozenset[ConnectionState] = frozenset({
    ConnectionState.CONNECTED,
    ConnectionState.RECONNECTING,
    ConnectionState.CLOSING,
})


@dataclass(frozen=True, slots=True)
class BoundScript:
    """A script definition bound to one connection's transport."""

    definition: ScriptDefinition
    invoke: "ScriptCallable"


class Connection:
    """
    A named connection to a single node or a cluster.

    Primitive commands go through ``client`` (the raw driver object). Bound
    scripts go through ``run_script``.
    """

    def __init__(
        self,
        name: str,
        topology: str,
        transport: "Transport",
        options: "ConnectionOptions",
    ) -> None:
        self.name = name
        self.topology = topology
        self.transport = transport
        self.options = options
        self.connected_at: datetime | None = None
        self._state = ConnectionState.INIT
        self._scripts: dict[str, BoundScript] = {}
        self._controller: ConnectionLifecycleController | None = None

    def __repr__(self) -> str:
        return f"Connection(name={self.name!r}, topology={self.topology!r}, state={self._state.value!r})"

    @property
    def client(self) -> Any:
        """Raw driver handle for primitive commands."""
        return self.transport.client

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def bound_scripts(self) -> frozenset[str]:
        return frozenset(self._scripts)

    def has_script(self, name: str) -> bool:
        return name in self._scripts

    def _transition(self, target: ConnectionState) -> None:
        if target not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidStateTransitionError(self.name, self._state.value, target.value)
        self._state = target

    def _bind(self, bound: BoundScript) -> None:
        self._scripts[bound.definition.name] = bound

    async def run_script(
        self,
        name: str,
        keys: Sequence[Any] = (),
        args: Sequence[Any] = (),
    ) -> Any:
        """
        Invoke a bound script.

        Args:
            name: Script name, as bound when the connection was created.
            keys: Exactly ``key_arity`` keys; ``key_prefix`` is prepended.
            args: Remaining script arguments.

        Raises:
            UnknownScriptError: If the script is not bound on this connection.
            ScriptArityError: If the number of keys does not match.
            ConnectionOfflineError: If offline and the offline queue is disabled.
            ScriptExecutionError: If the server rejects the script and
                ``show_friendly_error_stack`` is on.
        """
        bound = self._scripts.get(name)
        if bound is None:
            raise UnknownScriptError(self.name, name)

        keys = list(keys)
        args = list(args)
        if len(keys) != bound.definition.key_arity:
            raise ScriptArityError(name, bound.definition.key_arity, len(keys))

        if not self.options.enable_offline_queue and self._state is not ConnectionState.CONNECTED:
            raise ConnectionOfflineError(self.name, self._state.value)

        if self.options.key_prefix:
            keys = [f"{self.options.key_prefix}{key}" for key in keys]

        try:
            return await bound.invoke(keys, args)
        except ResponseError as e:
            if not self.options.show_friendly_error_stack:
                raise
            raise ScriptExecutionError(name, e, keys, args) from e

    async def ping(self) -> Any:
        return await self.transport.ping()

    async def close(self) -> None:
        """Shut this connection down. Safe to call more than once."""
        if self._controller is None:
            raise InvalidStateTransitionError(self.name, self._state.value, ConnectionState.CLOSING.value)
        await self._controller.shutdown()


class ConnectionLifecycleController:
    """
    Drives one connection from INIT to CLOSED.

    Responsibilities:
    - Forward every transport signal to the bus (through an EventForwarder)
    - Publish lifecycle events for state changes
    - Bind the requested scripts on the first ``ready``
    - Report the first connect failure exactly once
    - Shut the transport down on request

    Args:
        connection: The record to drive.
        bus: Where events are published.
        scripts: Source of script definitions.
        script_names: Scripts to bind once connected. Unknown names are
            logged and skipped.
        on_established: Called with the connection just before
            ``connectionEstablished`` is published.
        on_closed: Called once with the connection when it reaches CLOSED.
    """

    def __init__(
        self,
        connection: Connection,
        bus: "EventBus",
        scripts: "ScriptRegistry",
        script_names: Iterable[str] = (),
        on_established: Callable[[Connection], None] | None = None,
        on_closed: Callable[[Connection], None] | None = None,
    ) -> None:
        self._connection = connection
        self._bus = bus
        self._scripts = scripts
        self._script_names = tuple(dict.fromkeys(script_names))
        self._on_established = on_established
        self._on_closed = on_closed
        self._forwarder = EventForwarder(bus, connection.name)
        self._unsubscribers: list[Callable[[], None]] = []
        self._ready: asyncio.Future[Connection] | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task] = set()
        self._finalized = False
        self._logger: LoggerProxy = get_logger(__name__, backend=connection.options.logger)
        connection._controller = self

    @property
    def connection(self) -> Connection:
        return self._connection

    # =========================================================================
    # Opening
    # =========================================================================

    async def open(self) -> Connection:
        """
        Connect and wait for the first ``ready`` or ``error`` signal.

        Raises:
            TransportError: If the transport reports an error before ready.
        """
        conn = self._connection
        transport = conn.transport
        self._ready = asyncio.get_running_loop().create_future()

        self._forwarder.attach(transport)
        self._listen(transport)
        conn._transition(ConnectionState.CONNECTING)
        self._publish(EventType.CONNECTION_ATTEMPT, topology=conn.topology)
        self._logger.debug("Connecting", connection=conn.name, topology=conn.topology)

        try:
            try:
                await transport.connect()
            except Exception as e:
                self._handle_error(e)
            return await self._ready
        except TransportError:
            await self._discard_transport()
            raise
        except asyncio.CancelledError:
            self._abandon()
            raise

    def _listen(self, transport: "Transport") -> None:
        handlers = {
            TransportSignal.READY: self._handle_ready,
            TransportSignal.ERROR: self._handle_error,
            TransportSignal.RECONNECTING: self._handle_reconnecting,
            TransportSignal.CLOSE: self._handle_close,
            TransportSignal.END: self._handle_end,
        }
        for signal, handler in handlers.items():
            self._unsubscribers.append(transport.on(signal, handler))

    def _detach(self) -> None:
        self._forwarder.detach()
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def _establish(self) -> None:
        conn = self._connection
        definitions = self._scripts.get_many(self._script_names)
        missing = [name for name in self._script_names if name not in definitions]
        if missing:
            self._logger.warning(
                "Requested scripts are not registered",
                connection=conn.name,
                scripts=missing,
            )

        for name, definition in definitions.items():
            invoke = conn.transport.define_command(name, definition.key_arity, definition.body)
            conn._bind(BoundScript(definition, invoke))
            self._publish(EventType.LUA_COMMAND_DEFINED, script=name, key_arity=definition.key_arity)

        conn._transition(ConnectionState.CONNECTED)
        conn.connected_at = datetime.now(timezone.utc)
        if self._on_established is not None:
            self._on_established(conn)

        self._publish(EventType.CONNECTION_ESTABLISHED, scripts=sorted(conn.bound_scripts))
        self._logger.info(
            "Connection established",
            connection=conn.name,
            topology=conn.topology,
            scripts=len(conn.bound_scripts),
        )

    def _fail(self, error: BaseException) -> None:
        conn = self._connection
        conn._transition(ConnectionState.FAILED)
        self._detach()
        self._publish(EventType.CONNECTION_ERROR, error=error)
        self._logger.error("Connection failed", connection=conn.name, error=str(error))

        if self._ready is not None and not self._ready.done():
            failure = TransportError(conn.name, error)
            failure.__cause__ = error
            self._ready.set_exception(failure)

    def _abandon(self) -> None:
        conn = self._connection
        if conn.state is ConnectionState.CONNECTING:
            conn._transition(ConnectionState.FAILED)
            self._detach()
            self._logger.warning("Connection attempt cancelled", connection=conn.name)
            task = asyncio.ensure_future(self._discard_transport())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _discard_transport(self) -> None:
        try:
            await self._connection.transport.quit()
        except Exception as e:
            self._logger.debug(
                "Error releasing failed transport",
                connection=self._connection.name,
                error=str(e),
            )

    # =========================================================================
    # Signal handlers
    # =========================================================================

    def _handle_ready(self, *args: Any) -> None:
        conn = self._connection
        if conn.state is ConnectionState.CONNECTING:
            try:
                self._establish()
            except Exception as e:
                self._fail(e)
                return
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(conn)
        elif conn.state is ConnectionState.RECONNECTING:
            conn._transition(ConnectionState.CONNECTED)
            self._logger.info("Connection restored", connection=conn.name)

    def _handle_error(self, error: BaseException | None = None, *args: Any) -> None:
        conn = self._connection
        if conn.state is ConnectionState.CONNECTING:
            self._fail(error if error is not None else ConnectionError("unknown transport error"))
        elif conn.is_active:
            self._publish(EventType.ERROR, error=error)
            self._logger.error("Connection error", connection=conn.name, error=str(error))

    def _handle_reconnecting(self, delay_ms: Any = None, attempt: Any = None, *args: Any) -> None:
        conn = self._connection
        if conn.state is ConnectionState.CONNECTED:
            conn._transition(ConnectionState.RECONNECTING)
        if conn.state is ConnectionState.RECONNECTING:
            self._publish(EventType.CONNECTION_RECONNECTING, delay_ms=delay_ms, attempt=attempt)
            self._logger.warning(
                "Reconnecting",
                connection=conn.name,
                delay_ms=delay_ms,
                attempt=attempt,
            )

    def _handle_close(self, *args: Any) -> None:
        if self._connection.is_active:
            self._publish(EventType.CONNECTION_CLOSED)

    def _handle_end(self, *args: Any) -> None:
        conn = self._connection
        if not conn.is_active:
            return
        self._publish(EventType.CONNECTION_ENDED)
        # During shutdown() the CLOSED transition happens once quit() returns
        if conn.state is not ConnectionState.CLOSING:
            self._logger.warning("Connection ended by transport", connection=conn.name)
            self._finalize()

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """
        Move to CLOSING, quit the transport, then CLOSED.

        Concurrent and repeated calls share one shutdown. A connection that
        already reached CLOSED (or never connected) is left untouched.

        Raises:
            Exception: Whatever ``transport.quit()`` raised. The connection
                still ends up CLOSED.
        """
        if self._shutdown_task is None:
            if not self._connection.is_active:
                return
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        await self._shutdown_task

    async def _shutdown(self) -> None:
        conn = self._connection
        if conn.state is not ConnectionState.CLOSING:
            conn._transition(ConnectionState.CLOSING)
        self._logger.debug("Closing connection", connection=conn.name)
        try:
            await conn.transport.quit()
        except Exception as e:
            self._logger.error("Error closing connection", connection=conn.name, error=str(e))
            raise
        finally:
            self._finalize()

    def _finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        conn = self._connection
        conn._transition(ConnectionState.CLOSED)
        self._detach()
        self._logger.info("Connection closed", connection=conn.name)
        if self._on_closed is not None:
            self._on_closed(conn)

    def _publish(self, event_type: EventType, error: BaseException | None = None, **details: Any) -> None:
        self._bus.publish(
            event_type,
            LifecycleEvent(
                type=event_type,
                connection=self._connection.name,
                error=error,
                details=details,
            ),
        )
