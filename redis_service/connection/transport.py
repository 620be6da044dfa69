"""
Transport adapters around the redis-py asyncio driver.

The rest of the package only relies on the ``Transport`` protocol: signal
subscription, connect, script definition and graceful shutdown. Wire
protocol, authentication and cluster slot routing stay inside redis-py.

Signals emitted, in order, for a successful connect:
    wait -> connect -> select(db) [single node, db != 0] -> ready
Afterwards:
    reconnecting(delay_ms, attempt)  each time the retry policy retries
    connect, ready                   once an operation succeeds again
    error(exc)                       on failures
    close, end                       on shutdown, or when the policy gives up
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable

import redis.asyncio as redis
from redis.asyncio.cluster import ClusterNode, RedisCluster

from redis_service.config.logging import get_logger
from redis_service.connection.retry import DEFAULT_SUPPORTED_ERRORS, RetryStrategy, StrategyRetry, STOP
from redis_service.events.types import TransportSignal

if TYPE_CHECKING:
    from redis_service.connection.options import ClusterOptions, ConnectionOptions

logger = get_logger(__name__)

ScriptCallable = Callable[[Sequence[Any], Sequence[Any]], Awaitable[Any]]
SignalHandler = Callable[..., Any]

TOPOLOGY_SINGLE = "single"
TOPOLOGY_CLUSTER = "cluster"


@runtime_checkable
class Transport(Protocol):
    """Contract the lifecycle controller expects from a backing-store driver."""

    name: str

    @property
    def client(self) -> Any:
        """Raw driver handle exposing the primitive command set."""

    def on(self, signal: TransportSignal, handler: SignalHandler) -> Callable[[], None]:
        """Subscribe to a signal; returns an unsubscribe handle."""

    async def connect(self) -> None:
        """Start connecting. Outcome is reported through ``ready``/``error`` signals."""

    def define_command(self, name: str, key_arity: int, body: str) -> ScriptCallable:
        """Make a Lua script invocable as ``await call(keys, args)``."""

    async def quit(self) -> None:
        """Gracefully shut the transport down."""

    async def ping(self) -> Any:
        """Round-trip to the server."""


class SignalEmitter:
    """Minimal signal registry shared by the transport adapters."""

    def __init__(self) -> None:
        self._listeners: dict[TransportSignal, list[SignalHandler]] = {}

    def on(self, signal: TransportSignal, handler: SignalHandler) -> Callable[[], None]:
        signal = TransportSignal(signal)
        self._listeners.setdefault(signal, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._listeners.get(signal)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, signal: TransportSignal, *args: Any) -> None:
        for handler in list(self._listeners.get(signal, ())):
            try:
                handler(*args)
            except Exception as e:
                logger.error(
                    "Transport signal handler failed",
                    signal=signal.value,
                    error=str(e),
                    exc_info=True,
                )


class BaseRedisTransport(SignalEmitter):
    """
    Shared behaviour of the single-node and cluster adapters.

    Before the first ``ready`` the retry policy is bypassed: the initial
    connect fails fast and is reported once through ``error``. After that,
    the configured strategy decides whether and when to reconnect.
    """

    topology: str = TOPOLOGY_SINGLE

    def __init__(self, name: str, options: "ConnectionOptions") -> None:
        super().__init__()
        self.name = name
        self._options = options
        self._established = False
        self._reconnecting = False
        self._ended = False
        self._background: set[asyncio.Task] = set()
        self._retry = StrategyRetry(
            self._effective_strategy,
            on_retry=self._on_retry,
            on_recovered=self._on_recovered,
            on_give_up=self._on_give_up,
        )
        self._client = self._build_client()

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _build_client(self) -> Any:
        raise NotImplementedError

    def _strategy(self) -> RetryStrategy | None:
        return self._options.retry_strategy

    async def _handshake(self) -> None:
        await self._client.ping()

    def _after_connect(self) -> None:
        """Signals emitted between ``connect`` and ``ready``."""

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    @property
    def client(self) -> Any:
        return self._client

    async def connect(self) -> None:
        self.emit(TransportSignal.WAIT)
        try:
            await self._handshake()
        except Exception as e:
            logger.debug("Transport handshake failed", connection=self.name, error=str(e))
            self.emit(TransportSignal.ERROR, e)
            return

        self._established = True
        self.emit(TransportSignal.CONNECT)
        self._after_connect()
        self.emit(TransportSignal.READY)

    def define_command(self, name: str, key_arity: int, body: str) -> ScriptCallable:
        script = self._client.register_script(body)

        async def invoke(keys: Sequence[Any], args: Sequence[Any]) -> Any:
            return await script(keys=list(keys), args=list(args))

        invoke.__name__ = name
        return invoke

    async def quit(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            self.emit(TransportSignal.ERROR, e)
            raise
        finally:
            self._established = False
        self.emit(TransportSignal.CLOSE)
        self._emit_end()

    async def ping(self) -> Any:
        return await self._client.ping()

    # ------------------------------------------------------------------
    # Retry hooks
    # ------------------------------------------------------------------

    def _effective_strategy(self, attempt: int) -> float | None:
        if not self._established:
            return STOP
        strategy = self._strategy()
        if strategy is None:
            return STOP
        return strategy(attempt)

    def _on_retry(self, attempt: int, delay_ms: float, error: BaseException) -> None:
        if not self._reconnecting:
            self._reconnecting = True
            self.emit(TransportSignal.ERROR, error)
            self.emit(TransportSignal.CLOSE)
        self.emit(TransportSignal.RECONNECTING, delay_ms, attempt)

    def _on_recovered(self, attempts: int) -> None:
        if self._reconnecting:
            self._reconnecting = False
            self.emit(TransportSignal.CONNECT)
            self.emit(TransportSignal.READY)

    def _on_give_up(self, attempts: int, error: BaseException) -> None:
        if not self._established:
            return
        logger.warning(
            "Retry strategy gave up, ending transport",
            connection=self.name,
            attempts=attempts,
            error=str(error),
        )
        self._established = False
        self._reconnecting = False
        self.emit(TransportSignal.CLOSE)
        self._emit_end()
        task = asyncio.ensure_future(self._release())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _release(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.debug("Error releasing ended transport", connection=self.name, error=str(e))

    def _emit_end(self) -> None:
        if not self._ended:
            self._ended = True
            self.emit(TransportSignal.END)

    # ------------------------------------------------------------------
    # Shared option mapping
    # ------------------------------------------------------------------

    def _common_kwargs(self) -> dict[str, Any]:
        options = self._options
        kwargs: dict[str, Any] = {
            "password": options.password,
            "username": options.username,
            "socket_connect_timeout": options.connect_timeout,
            "socket_timeout": options.command_timeout,
            "decode_responses": True,
            "retry": self._retry,
            "retry_on_error": list(DEFAULT_SUPPORTED_ERRORS),
        }
        if options.client_name:
            kwargs["client_name"] = options.client_name
        if options.tls:
            kwargs["ssl"] = True
            if isinstance(options.tls, dict):
                kwargs.update({f"ssl_{key}": value for key, value in options.tls.items()})
        kwargs.update(options.driver_extras)
        return kwargs


class RedisTransport(BaseRedisTransport):
    """Single-node transport backed by ``redis.asyncio.Redis``."""

    topology = TOPOLOGY_SINGLE

    def _build_client(self) -> redis.Redis:
        options = self._options
        return redis.Redis(
            host=options.host,
            port=options.port,
            db=options.db,
            **self._common_kwargs(),
        )

    def _after_connect(self) -> None:
        if self._options.db:
            self.emit(TransportSignal.SELECT, self._options.db)


class RedisClusterTransport(BaseRedisTransport):
    """Cluster transport backed by ``redis.asyncio.cluster.RedisCluster``."""

    topology = TOPOLOGY_CLUSTER

    def __init__(self, name: str, options: "ClusterOptions") -> None:
        super().__init__(name, options)

    def _strategy(self) -> RetryStrategy | None:
        return self._options.cluster_retry_strategy

    def _build_client(self) -> RedisCluster:
        options = self._options
        return RedisCluster(
            startup_nodes=[ClusterNode(node.host, node.port) for node in options.nodes],
            read_from_replicas=options.scale_reads != "master",
            cluster_error_retry_attempts=options.max_redirections,
            **self._common_kwargs(),
        )

    async def _handshake(self) -> None:
        await self._client.initialize()
        await self._client.ping()


def create_transport(
    name: str,
    topology: str,
    options: "ConnectionOptions",
) -> BaseRedisTransport:
    """Default transport factory used by the ConnectionRegistry."""
    if topology == TOPOLOGY_CLUSTER:
        return RedisClusterTransport(name, options)  # type: ignore[arg-type]
    return RedisTransport(name, options)
