"""
Event value objects for connection lifecycle notifications.

Two families of events travel over the EventBus:
- SignalEvent: a raw transport signal re-published for one connection.
- LifecycleEvent: a domain event describing a connection state change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Topic carrying every transport signal of every connection
AGGREGATE_TOPIC = "redis"


class TransportSignal(str, Enum):
    """Signals emitted by a transport while it connects, runs and shuts down."""

    CONNECT = "connect"
    READY = "ready"
    ERROR = "error"
    CLOSE = "close"
    RECONNECTING = "reconnecting"
    END = "end"
    WAIT = "wait"
    SELECT = "select"


class EventType(str, Enum):
    """Lifecycle and domain events published by the service."""

    CONNECTION_ATTEMPT = "connectionAttempt"
    CONNECTION_ESTABLISHED = "connectionEstablished"
    CONNECTION_ERROR = "connectionError"
    CONNECTION_CLOSED = "connectionClosed"
    CONNECTION_RECONNECTING = "connectionReconnecting"
    CONNECTION_ENDED = "connectionEnded"
    LUA_COMMAND_DEFINED = "luaCommandDefined"
    CLOSING_ALL_CONNECTIONS = "closingAllConnections"
    ALL_CONNECTIONS_CLOSED = "allConnectionsClosed"
    ERROR = "error"


# Every signal a forwarder subscribes to
TRANSPORT_SIGNALS: tuple[TransportSignal, ...] = tuple(TransportSignal)


def signal_topic(connection: str, signal: TransportSignal | str) -> str:
    """Connection-qualified topic name, e.g. ``cache:ready``."""
    value = signal.value if isinstance(signal, TransportSignal) else signal
    return f"{connection}:{value}"


@dataclass(frozen=True, slots=True)
class SignalEvent:
    """
    A transport signal forwarded for a named connection.

    Attributes:
        connection: Name of the connection that produced the signal.
        signal: Which transport signal fired.
        args: Positional arguments the transport passed with the signal.
    """

    connection: str
    signal: TransportSignal
    args: tuple[Any, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection": self.connection,
            "event": self.signal.value,
            "args": list(self.args),
        }


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """
    A connection lifecycle or registry-wide event.

    Attributes:
        type: The event type.
        connection: Connection name, or None for registry-wide events.
        error: The exception that triggered the event, if any.
        details: Extra event-specific data (script name, attempt, outcomes...).
    """

    type: EventType
    connection: str | None = None
    error: BaseException | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.connection is not None:
            data["connection"] = self.connection
        if self.error is not None:
            data["error"] = str(self.error)
        if self.details:
            data["details"] = dict(self.details)
        return data
