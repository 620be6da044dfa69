"""
Health checks for named connections.

A connection is checked according to its lifecycle state: a CONNECTED
connection is pinged under a timeout, a RECONNECTING one is reported as
degraded without touching the transport (a ping would only queue behind the
retry loop), and a CLOSING one is reported as unhealthy.

Usage:
    result = await check_connection(conn, timeout=3.0)
    result.to_dict()
    # {"status": "healthy", "component": "cache", "latency_ms": 0.8,
    #  "details": {"topology": "single", "state": "connected", ...}}
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from redis_service.config.logging import get_logger
from redis_service.connection.lifecycle import Connection, ConnectionState

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health check status values."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheckResult:
    """Result of checking one connection."""
    status: HealthStatus
    component: str
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for reporting."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "component": self.component,
        }
        if self.latency_ms is not None:
            result["latency_ms"] = round(self.latency_ms, 2)
        if self.error:
            result["error"] = self.error
        if self.details:
            result["details"] = self.details
        return result


def describe_connection(connection: Connection) -> dict[str, Any]:
    """Static facts about a connection included in every health result."""
    details: dict[str, Any] = {
        "topology": connection.topology,
        "state": connection.state.value,
        "scripts": sorted(connection.bound_scripts),
    }
    if connection.connected_at is not None:
        uptime = datetime.now(timezone.utc) - connection.connected_at
        details["uptime_s"] = round(uptime.total_seconds(), 1)
    return details


async def check_connection(
    connection: Connection,
    timeout: float = 5.0,
    slow_ms: float | None = None,
) -> HealthCheckResult:
    """
    Check one connection.

    Args:
        connection: The connection to check.
        timeout: Maximum time to wait for PING (seconds).
        slow_ms: When set, a successful PING slower than this is DEGRADED.

    Returns:
        A result; failures never propagate.
    """
    details = describe_connection(connection)
    state = connection.state

    if state is ConnectionState.RECONNECTING:
        return HealthCheckResult(
            status=HealthStatus.DEGRADED,
            component=connection.name,
            error="reconnecting",
            details=details,
        )
    if state is not ConnectionState.CONNECTED:
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            component=connection.name,
            error=state.value,
            details=details,
        )

    start_time = time.perf_counter()
    try:
        await asyncio.wait_for(connection.ping(), timeout=timeout)
    except asyncio.TimeoutError:
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.warning("Health check timeout", connection=connection.name, timeout=timeout)
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            component=connection.name,
            latency_ms=latency_ms,
            error=f"timeout after {timeout}s",
            details=details,
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.warning("Health check failed", connection=connection.name, error=str(e))
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            component=connection.name,
            latency_ms=latency_ms,
            error=str(e),
            details=details,
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    if slow_ms is not None and latency_ms > slow_ms:
        logger.info("Slow health check", connection=connection.name, latency_ms=round(latency_ms, 2))
        return HealthCheckResult(
            status=HealthStatus.DEGRADED,
            component=connection.name,
            latency_ms=latency_ms,
            error=f"slow ping ({latency_ms:.1f}ms > {slow_ms}ms)",
            details=details,
        )
    return HealthCheckResult(
        status=HealthStatus.HEALTHY,
        component=connection.name,
        latency_ms=latency_ms,
        details=details,
    )


def aggregate_status(results: Mapping[str, HealthCheckResult]) -> HealthStatus:
    """
    Overall status of several checks.

    HEALTHY when every check passed (or there is nothing to check),
    UNHEALTHY when every check failed outright, DEGRADED otherwise.
    """
    if not results:
        return HealthStatus.HEALTHY
    statuses = {result.status for result in results.values()}
    if statuses == {HealthStatus.HEALTHY}:
        return HealthStatus.HEALTHY
    if statuses == {HealthStatus.UNHEALTHY}:
        return HealthStatus.UNHEALTHY
    return HealthStatus.DEGRADED
