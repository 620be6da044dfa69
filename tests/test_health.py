"""
Tests for connection health checks.
"""

import asyncio

import pytest

from redis_service.connection.health import (
    HealthCheckResult,
    HealthStatus,
    aggregate_status,
    check_connection,
)
from redis_service.connection.lifecycle import ConnectionState
from redis_service.events.types import TransportSignal


class TestCheckConnection:
    """Tests for check_connection()."""

    @pytest.mark.asyncio
    async def test_connected_is_healthy(self, registry, transport_factory):
        conn = await registry.create_connection("cache", script_names=["ExpireIfNoTTL"])

        result = await check_connection(conn, timeout=1.0)

        assert result.healthy
        assert result.component == "cache"
        assert result.latency_ms is not None
        assert result.details["topology"] == "single"
        assert result.details["state"] == "connected"
        assert result.details["scripts"] == ["ExpireIfNoTTL"]
        assert result.details["uptime_s"] >= 0
        assert transport_factory.created["cache"].ping_calls == 1

    @pytest.mark.asyncio
    async def test_reconnecting_is_degraded_without_ping(self, registry, transport_factory):
        conn = await registry.create_connection("cache")
        transport = transport_factory.created["cache"]
        transport.emit(TransportSignal.ERROR, ConnectionResetError("reset"))
        transport.emit(TransportSignal.CLOSE)
        transport.emit(TransportSignal.RECONNECTING, 100, 1)
        assert conn.state is ConnectionState.RECONNECTING

        result = await check_connection(conn)

        assert result.status is HealthStatus.DEGRADED
        assert result.error == "reconnecting"
        assert result.details["state"] == "reconnecting"
        assert transport.ping_calls == 0

    @pytest.mark.asyncio
    async def test_timeout(self, registry, transport_factory):
        conn = await registry.create_connection("slow")

        async def slow_ping():
            await asyncio.sleep(1)

        transport_factory.created["slow"].ping = slow_ping

        result = await check_connection(conn, timeout=0.01)

        assert result.status is HealthStatus.UNHEALTHY
        assert result.error == "timeout after 0.01s"

    @pytest.mark.asyncio
    async def test_ping_error(self, registry, transport_factory):
        conn = await registry.create_connection("down")

        async def broken_ping():
            raise ConnectionRefusedError("refused")

        transport_factory.created["down"].ping = broken_ping

        result = await check_connection(conn)

        assert result.to_dict()["status"] == "unhealthy"
        assert result.to_dict()["error"] == "refused"

    @pytest.mark.asyncio
    async def test_slow_ping_is_degraded(self, registry, transport_factory):
        conn = await registry.create_connection("lagging")

        async def lagging_ping():
            await asyncio.sleep(0.05)
            return True

        transport_factory.created["lagging"].ping = lagging_ping

        result = await check_connection(conn, timeout=1.0, slow_ms=1)

        assert result.status is HealthStatus.DEGRADED
        assert result.error.startswith("slow ping")


class TestAggregateStatus:
    """Tests for aggregate_status()."""

    def _result(self, status):
        return HealthCheckResult(status=status, component="c")

    def test_empty_is_healthy(self):
        assert aggregate_status({}) is HealthStatus.HEALTHY

    def test_mixed_is_degraded(self):
        results = {
            "a": self._result(HealthStatus.HEALTHY),
            "b": self._result(HealthStatus.UNHEALTHY),
        }

        assert aggregate_status(results) is HealthStatus.DEGRADED

    def test_reconnecting_only_is_degraded(self):
        results = {"a": self._result(HealthStatus.DEGRADED)}

        assert aggregate_status(results) is HealthStatus.DEGRADED

    def test_all_failed_is_unhealthy(self):
        results = {"a": self._result(HealthStatus.UNHEALTHY)}

        assert aggregate_status(results) is HealthStatus.UNHEALTHY
