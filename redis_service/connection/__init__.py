"""
Named connections and their lifecycle.

- options.py: connection and cluster option models
- retry.py: pluggable reconnection policy
- transport.py: redis-py backed transports
- lifecycle.py: connection record and lifecycle controller
- registry.py: registry of named connections
- health.py: connection health checks
- topology.py: cluster topology inspection
"""

from redis_service.connection.options import (
    ClusterOptions,
    ConnectionOptions,
    NodeAddress,
    merge_cluster_options,
    merge_connection_options,
)
from redis_service.connection.retry import (
    STOP,
    RetryStrategy,
    StrategyRetry,
    exponential_retry_strategy,
    linear_retry_strategy,
)
from redis_service.connection.transport import (
    RedisClusterTransport,
    RedisTransport,
    Transport,
    create_transport,
)
from redis_service.connection.lifecycle import (
    Connection,
    ConnectionLifecycleController,
    ConnectionState,
)
from redis_service.connection.registry import (
    CloseAllResult,
    CloseOutcome,
    ConnectionRegistry,
)
from redis_service.connection.health import HealthCheckResult, HealthStatus, check_connection
from redis_service.connection.topology import (
    ClusterNodeInfo,
    ClusterTopologyReport,
    inspect_cluster,
)

__all__ = [
    "STOP",
    "CloseAllResult",
    "CloseOutcome",
    "ClusterNodeInfo",
    "ClusterOptions",
    "ClusterTopologyReport",
    "Connection",
    "ConnectionLifecycleController",
    "ConnectionOptions",
    "ConnectionRegistry",
    "ConnectionState",
    "HealthCheckResult",
    "HealthStatus",
    "check_connection",
    "NodeAddress",
    "RedisClusterTransport",
    "RedisTransport",
    "RetryStrategy",
    "StrategyRetry",
    "Transport",
    "create_transport",
    "exponential_retry_strategy",
    "inspect_cluster",
    "linear_retry_strategy",
    "merge_cluster_options",
    "merge_connection_options",
]
