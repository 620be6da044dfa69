"""
Named Redis connections with a catalogue of atomic Lua scripts.

Usage:
    from redis_service import ConnectionRegistry, BuiltinScript

    registry = ConnectionRegistry()
    conn = await registry.create_connection(
        "cache",
        {"host": "127.0.0.1", "port": 6379},
        [BuiltinScript.EXPIRE_IF_NO_TTL],
    )
    await conn.run_script("ExpireIfNoTTL", ["session:1"], [60])
    await registry.close_all()
"""

from redis_service.config.logging import get_logger, reset_logger, setup_logger
from redis_service.connection import (
    STOP,
    CloseAllResult,
    CloseOutcome,
    ClusterOptions,
    Connection,
    ConnectionOptions,
    ConnectionRegistry,
    ConnectionState,
    NodeAddress,
    exponential_retry_strategy,
    linear_retry_strategy,
)
from redis_service.errors import (
    CloseAllError,
    ConnectionOfflineError,
    DuplicateNameError,
    InvalidDefinitionError,
    InvalidStateTransitionError,
    InvalidTopologyError,
    MissingLoggerMethodError,
    NotFoundError,
    RedisServiceError,
    ScriptArityError,
    ScriptExecutionError,
    TransportError,
    UnknownScriptError,
)
from redis_service.events import (
    AGGREGATE_TOPIC,
    EventBus,
    EventType,
    LifecycleEvent,
    SignalEvent,
    TransportSignal,
)
from redis_service.scripts import (
    BuiltinScript,
    Direction,
    ScriptDefinition,
    ScriptRegistry,
)

__version__ = "1.0.0"

__all__ = [
    "AGGREGATE_TOPIC",
    "STOP",
    "BuiltinScript",
    "CloseAllError",
    "CloseAllResult",
    "CloseOutcome",
    "ClusterOptions",
    "Connection",
    "ConnectionOfflineError",
    "ConnectionOptions",
    "ConnectionRegistry",
    "ConnectionState",
    "Direction",
    "DuplicateNameError",
    "EventBus",
    "EventType",
    "InvalidDefinitionError",
    "InvalidStateTransitionError",
    "InvalidTopologyError",
    "LifecycleEvent",
    "MissingLoggerMethodError",
    "NodeAddress",
    "NotFoundError",
    "RedisServiceError",
    "ScriptArityError",
    "ScriptDefinition",
    "ScriptExecutionError",
    "ScriptRegistry",
    "SignalEvent",
    "TransportError",
    "TransportSignal",
    "UnknownScriptError",
    "exponential_retry_strategy",
    "get_logger",
    "linear_retry_strategy",
    "reset_logger",
    "setup_logger",
]
