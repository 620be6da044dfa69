"""
Tests for the registry of named connections.

Tests verify:
- create then get returns the same connection
- Concurrent creations with the same name: exactly one wins
- Names are released on failure
- close_all attempts every shutdown and reports a composite result
- Health checks
"""

import asyncio

import pytest

from redis_service.connection.health import HealthStatus
from redis_service.connection.lifecycle import ConnectionState
from redis_service.errors import (
    CloseAllError,
    DuplicateNameError,
    InvalidTopologyError,
    MissingLoggerMethodError,
    NotFoundError,
    TransportError,
)
from redis_service.events.types import EventType, LifecycleEvent


def lifecycle_types(events):
    return [payload.type.value for _, payload in events if isinstance(payload, LifecycleEvent)]


class TestCreateConnection:
    """Tests for create_connection()/create_cluster_connection()."""

    @pytest.mark.asyncio
    async def test_create_then_get_returns_same_connection(self, registry):
        conn = await registry.create_connection("main", {}, [])

        assert registry.get_connection("main") is conn
        assert registry.has_connection("main")
        assert registry.names == ["main"]

    @pytest.mark.asyncio
    async def test_options_reach_the_transport(self, registry, transport_factory):
        conn = await registry.create_connection("main", {"port": 6380, "keyPrefix": "x:"})

        transport = transport_factory.created["main"]
        assert conn.transport is transport
        assert transport.options.port == 6380
        assert conn.options.key_prefix == "x:"
        assert conn.topology == "single"

    @pytest.mark.asyncio
    async def test_duplicate_of_active_name(self, registry):
        await registry.create_connection("main")

        with pytest.raises(DuplicateNameError):
            await registry.create_connection("main")

    @pytest.mark.asyncio
    async def test_concurrent_same_name_exactly_one_wins(self, registry, transport_factory):
        transport_factory.configure["main"] = {"gate": asyncio.Event()}

        first = asyncio.ensure_future(registry.create_connection("main"))
        second = asyncio.ensure_future(registry.create_connection("main"))
        await asyncio.sleep(0)
        transport_factory.configure["main"]["gate"].set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], DuplicateNameError)
        assert registry.get_connection("main") is successes[0]

    @pytest.mark.asyncio
    async def test_reserved_name_is_not_visible_until_connected(self, registry, transport_factory):
        gate = asyncio.Event()
        transport_factory.configure["main"] = {"gate": gate}

        task = asyncio.ensure_future(registry.create_connection("main"))
        await asyncio.sleep(0)

        with pytest.raises(NotFoundError):
            registry.get_connection("main")
        with pytest.raises(DuplicateNameError):
            await registry.create_connection("main")

        gate.set()
        conn = await task
        assert registry.get_connection("main") is conn

    @pytest.mark.asyncio
    async def test_distinct_names_proceed_concurrently(self, registry):
        conns = await asyncio.gather(*(registry.create_connection(f"c{i}") for i in range(5)))

        assert sorted(registry.names) == [f"c{i}" for i in range(5)]
        assert len({id(c) for c in conns}) == 5

    @pytest.mark.asyncio
    async def test_transport_failure_releases_name(self, registry, transport_factory, event_recorder):
        transport_factory.configure["main"] = {"fail_with": ConnectionRefusedError("refused")}

        with pytest.raises(TransportError):
            await registry.create_connection("main")

        with pytest.raises(NotFoundError):
            registry.get_connection("main")
        assert "connectionError" in lifecycle_types(event_recorder)

        transport_factory.configure.clear()
        conn = await registry.create_connection("main")
        assert conn.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_invalid_cluster_options_fail_before_io(self, registry, transport_factory):
        with pytest.raises(InvalidTopologyError):
            await registry.create_cluster_connection("cluster", {"nodes": []})

        assert transport_factory.created == {}
        await registry.create_cluster_connection("cluster", {"nodes": ["a:7000"]})

    @pytest.mark.asyncio
    async def test_invalid_logger_fails_before_io(self, registry, transport_factory):
        with pytest.raises(MissingLoggerMethodError):
            await registry.create_connection("main", {"logger": object()})

        assert transport_factory.created == {}
        assert not registry.has_connection("main")

    @pytest.mark.asyncio
    async def test_invalid_logger_on_options_model_fails_before_io(self, registry, transport_factory):
        from redis_service.connection.options import ConnectionOptions

        options = ConnectionOptions()
        options.logger = object()

        with pytest.raises(MissingLoggerMethodError):
            await registry.create_connection("main", options)

        assert transport_factory.created == {}
        assert not registry.has_connection("main")

    @pytest.mark.asyncio
    async def test_cluster_connection(self, registry, transport_factory):
        conn = await registry.create_cluster_connection(
            "cluster",
            {"nodes": [{"host": "10.0.0.1", "port": 7000}], "password": "secret"},
            ["ExpireIfNoTTL"],
        )

        assert conn.topology == "cluster"
        assert transport_factory.created["cluster"].topology == "cluster"
        assert conn.options.password == "secret"
        assert conn.bound_scripts == {"ExpireIfNoTTL"}

    @pytest.mark.asyncio
    async def test_registries_are_isolated(self, scripts, bus, transport_factory):
        from redis_service.connection.registry import ConnectionRegistry

        first = ConnectionRegistry(scripts, bus, transport_factory)
        second = ConnectionRegistry(scripts, bus, transport_factory)
        await first.create_connection("main")

        assert not second.has_connection("main")
        await second.create_connection("main")


class TestGetConnection:
    """Tests for get_connection()."""

    def test_unknown_name(self, registry):
        with pytest.raises(NotFoundError) as exc_info:
            registry.get_connection("nope")

        assert exc_info.value.name == "nope"

    @pytest.mark.asyncio
    async def test_connection_ended_by_transport_is_forgotten(self, registry, transport_factory):
        from redis_service.events.types import TransportSignal

        await registry.create_connection("main")
        transport_factory.created["main"].emit(TransportSignal.END)

        with pytest.raises(NotFoundError):
            registry.get_connection("main")

    @pytest.mark.asyncio
    async def test_reconnecting_connection_is_still_reachable(self, registry, transport_factory):
        from redis_service.events.types import TransportSignal

        conn = await registry.create_connection("main")
        transport_factory.created["main"].emit(TransportSignal.RECONNECTING, 100, 1)

        assert registry.get_connection("main") is conn


class TestCloseAll:
    """Tests for close_all()."""

    @pytest.mark.asyncio
    async def test_empty_registry(self, registry, event_recorder):
        result = await registry.close_all()

        assert result.ok
        assert len(result) == 0
        assert lifecycle_types(event_recorder) == ["closingAllConnections", "allConnectionsClosed"]

    @pytest.mark.asyncio
    async def test_every_name_is_gone_afterwards(self, registry, transport_factory):
        for name in ("a", "b", "c"):
            await registry.create_connection(name)

        result = await registry.close_all()

        assert result.ok
        assert sorted(result.closed) == ["a", "b", "c"]
        for name in ("a", "b", "c"):
            with pytest.raises(NotFoundError):
                registry.get_connection(name)
            assert transport_factory.created[name].quit_calls == 1

    @pytest.mark.asyncio
    async def test_failures_do_not_abort_siblings(self, registry, transport_factory, event_recorder):
        transport_factory.configure["bad"] = {"quit_error": RuntimeError("stuck")}
        for name in ("a", "bad", "c"):
            await registry.create_connection(name)
        event_recorder.clear()

        result = await registry.close_all()

        assert not result.ok
        assert [o.name for o in result.failed] == ["bad"]
        assert isinstance(result.failed[0].error, RuntimeError)
        assert sorted(result.closed) == ["a", "c"]
        assert transport_factory.created["a"].quit_calls == 1
        assert transport_factory.created["c"].quit_calls == 1
        for name in ("a", "bad", "c"):
            assert not registry.has_connection(name)

        types = lifecycle_types(event_recorder)
        assert types[0] == "closingAllConnections"
        assert types[-1] == "allConnectionsClosed"
        final = event_recorder[-1][1]
        assert final.details == {"closed": ["a", "c"], "failed": ["bad"]}

    @pytest.mark.asyncio
    async def test_raise_on_error(self, registry, transport_factory):
        transport_factory.configure["bad"] = {"quit_error": RuntimeError("stuck")}
        await registry.create_connection("good")
        await registry.create_connection("bad")

        with pytest.raises(CloseAllError) as exc_info:
            await registry.close_all(raise_on_error=True)

        assert [o.name for o in exc_info.value.result.failed] == ["bad"]
        assert "bad" in str(exc_info.value)
        assert registry.names == []

    @pytest.mark.asyncio
    async def test_connection_created_during_close_all_is_untouched(self, registry, transport_factory):
        transport_factory.configure["old"] = {"quit_delay": 0.02}
        await registry.create_connection("old")

        closing = asyncio.ensure_future(registry.close_all())
        await asyncio.sleep(0)
        new = await registry.create_connection("new")
        result = await closing

        assert [o.name for o in result.outcomes] == ["old"]
        assert registry.get_connection("new") is new

    @pytest.mark.asyncio
    async def test_close_all_twice(self, registry):
        await registry.create_connection("main")

        await registry.close_all()
        second = await registry.close_all()

        assert len(second) == 0

    @pytest.mark.asyncio
    async def test_close_connection(self, registry, transport_factory):
        await registry.create_connection("main")

        await registry.close_connection("main")

        assert not registry.has_connection("main")
        with pytest.raises(NotFoundError):
            await registry.close_connection("main")

    @pytest.mark.asyncio
    async def test_name_reusable_after_close(self, registry):
        await registry.create_connection("main")
        await registry.close_all()

        conn = await registry.create_connection("main")

        assert registry.get_connection("main") is conn

    @pytest.mark.asyncio
    async def test_result_to_dict(self, registry, transport_factory):
        transport_factory.configure["bad"] = {"quit_error": RuntimeError("stuck")}
        await registry.create_connection("bad")

        result = await registry.close_all()

        assert result.to_dict() == {
            "ok": False,
            "outcomes": [{"name": "bad", "ok": False, "error": "stuck"}],
        }


class TestHealthCheck:
    """Tests for health_check()."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, registry, transport_factory):
        await registry.create_connection("a")
        await registry.create_connection("b", script_names=["ExpireIfNoTTL"])

        results = await registry.health_check()

        assert set(results) == {"a", "b"}
        assert all(r.status is HealthStatus.HEALTHY for r in results.values())
        assert results["b"].details["scripts"] == ["ExpireIfNoTTL"]
        assert transport_factory.created["a"].ping_calls == 1

    @pytest.mark.asyncio
    async def test_slow_ping_is_unhealthy(self, registry, transport_factory):
        await registry.create_connection("slow")

        async def slow_ping():
            await asyncio.sleep(1)

        transport_factory.created["slow"].ping = slow_ping

        results = await registry.health_check(timeout=0.01)

        assert results["slow"].status is HealthStatus.UNHEALTHY
        assert "timeout" in results["slow"].error

    @pytest.mark.asyncio
    async def test_failing_ping_is_unhealthy(self, registry, transport_factory):
        await registry.create_connection("down")

        async def broken_ping():
            raise ConnectionResetError("reset")

        transport_factory.created["down"].ping = broken_ping

        results = await registry.health_check()

        assert results["down"].to_dict()["error"] == "reset"

    @pytest.mark.asyncio
    async def test_no_connections(self, registry):
        assert await registry.health_check() == {}


class TestEvents:
    """Tests for events published through the registry's bus."""

    @pytest.mark.asyncio
    async def test_established_event_payload(self, registry, bus):
        received = []
        bus.subscribe(EventType.CONNECTION_ESTABLISHED, received.append)

        await registry.create_connection("main", script_names=["ExpireIfNoTTL"])

        assert received[0].connection == "main"
        assert received[0].details == {"scripts": ["ExpireIfNoTTL"]}

    @pytest.mark.asyncio
    async def test_get_connection_works_inside_established_handler(self, registry, bus):
        seen = []
        bus.subscribe(
            EventType.CONNECTION_ESTABLISHED,
            lambda event: seen.append(registry.get_connection(event.connection)),
        )

        conn = await registry.create_connection("main")

        assert seen == [conn]
