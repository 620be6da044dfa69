"""
Pytest configuration and fixtures for redis_service tests.

FakeTransport emits transport signals on demand so the lifecycle controller
and the registry are tested without a server. FakeRedisTransport runs the
real transport code against an in-memory fakeredis server, so Lua scripts
execute for real.
"""

import asyncio
from typing import Any

import pytest
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis
from unittest.mock import MagicMock

from redis_service.config.logging import reset_logger
from redis_service.connection.registry import ConnectionRegistry
from redis_service.connection.transport import RedisTransport, SignalEmitter
from redis_service.events.bus import EventBus
from redis_service.events.types import TransportSignal
from redis_service.scripts.registry import ScriptRegistry


class FakeTransport(SignalEmitter):
    """
    Transport double driven by the test.

    Args:
        fail_with: Emit ``error`` with this exception instead of ``ready``.
        auto_ready: Emit ``connect``/``ready`` at the end of ``connect()``.
        gate: When set, ``connect()`` waits for this event first.
        quit_error: Raised by ``quit()``.
        quit_delay: Seconds ``quit()`` sleeps before finishing.
    """

    def __init__(
        self,
        name: str,
        topology: str = "single",
        options: Any = None,
        fail_with: BaseException | None = None,
        auto_ready: bool = True,
        gate: asyncio.Event | None = None,
        quit_error: BaseException | None = None,
        quit_delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.name = name
        self.topology = topology
        self.options = options
        self.fail_with = fail_with
        self.auto_ready = auto_ready
        self.gate = gate
        self.quit_error = quit_error
        self.quit_delay = quit_delay
        self.client = MagicMock(name=f"{name}-client")
        self.defined: dict[str, tuple[int, str]] = {}
        self.script_results: dict[str, Any] = {}
        self.calls: list[tuple[str, list, list]] = []
        self.connect_calls = 0
        self.quit_calls = 0
        self.ping_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        self.emit(TransportSignal.WAIT)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            self.emit(TransportSignal.ERROR, self.fail_with)
            return
        if self.auto_ready:
            self.emit(TransportSignal.CONNECT)
            self.emit(TransportSignal.READY)

    def define_command(self, name: str, key_arity: int, body: str):
        self.defined[name] = (key_arity, body)

        async def invoke(keys, args):
            self.calls.append((name, list(keys), list(args)))
            result = self.script_results.get(name)
            if isinstance(result, BaseException):
                raise result
            return result

        return invoke

    async def quit(self) -> None:
        self.quit_calls += 1
        if self.quit_delay:
            await asyncio.sleep(self.quit_delay)
        if self.quit_error is not None:
            self.emit(TransportSignal.ERROR, self.quit_error)
            raise self.quit_error
        self.emit(TransportSignal.CLOSE)
        self.emit(TransportSignal.END)

    async def ping(self) -> bool:
        self.ping_calls += 1
        return True


class FakeTransportFactory:
    """Transport factory that remembers every transport it built."""

    def __init__(self) -> None:
        self.created: dict[str, FakeTransport] = {}
        self.configure: dict[str, dict[str, Any]] = {}

    def __call__(self, name: str, topology: str, options: Any) -> FakeTransport:
        transport = FakeTransport(name, topology, options, **self.configure.get(name, {}))
        self.created[name] = transport
        return transport


class FakeRedisTransport(RedisTransport):
    """
    The real single-node transport, backed by an in-memory fakeredis server.

    The driver's retry settings are copied into the pool so connections run
    through the transport's StrategyRetry like a real client does.
    """

    def __init__(self, name: str, options: Any, server: FakeServer) -> None:
        self._server = server
        super().__init__(name, options)

    def _build_client(self):
        client = fake_aioredis.FakeRedis(
            server=self._server,
            db=self._options.db,
            decode_responses=True,
        )
        kwargs = self._common_kwargs()
        client.connection_pool.connection_kwargs.update(
            retry=kwargs["retry"],
            retry_on_error=kwargs["retry_on_error"],
        )
        return client


class RecordingLogger:
    """Custom logger that records every call."""

    def __init__(self) -> None:
        self.records: list[tuple[str, tuple]] = []

    def info(self, *args):
        self.records.append(("info", args))

    def error(self, *args):
        self.records.append(("error", args))

    def debug(self, *args):
        self.records.append(("debug", args))

    def warn(self, *args):
        self.records.append(("warn", args))

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args in self.records if level is None or lvl == level]


@pytest.fixture(autouse=True)
def _reset_custom_logger():
    """Every test starts and ends with the standard logging backend."""
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def scripts():
    return ScriptRegistry()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def registry(scripts, bus, transport_factory):
    return ConnectionRegistry(scripts=scripts, bus=bus, transport_factory=transport_factory)


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def fakeredis_registry(scripts, bus, fake_server):
    """Registry whose connections run against one in-memory server."""

    def factory(name, topology, options):
        return FakeRedisTransport(name, options, fake_server)

    return ConnectionRegistry(scripts=scripts, bus=bus, transport_factory=factory)


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def event_recorder(bus):
    """Collects every (topic, payload) published on the bus."""
    events: list[tuple[str, Any]] = []
    bus.subscribe_all(lambda topic, payload: events.append((topic, payload)))
    return events
