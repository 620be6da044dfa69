"""
Event handling for connection lifecycle notifications.

- types.py: event enums and value objects
- bus.py: topic-based publish/subscribe bus
- forwarder.py: transport signal to bus bridge
"""

from redis_service.events.types import (
    AGGREGATE_TOPIC,
    TRANSPORT_SIGNALS,
    EventType,
    LifecycleEvent,
    SignalEvent,
    TransportSignal,
    signal_topic,
)
from redis_service.events.bus import EventBus
from redis_service.events.forwarder import EventForwarder

__all__ = [
    "AGGREGATE_TOPIC",
    "TRANSPORT_SIGNALS",
    "EventBus",
    "EventForwarder",
    "EventType",
    "LifecycleEvent",
    "SignalEvent",
    "TransportSignal",
    "signal_topic",
]
