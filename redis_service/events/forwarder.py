"""
Re-publishes transport signals of one connection on the EventBus.

Each signal goes out twice, always together:
- on ``<connection>:<signal>`` for listeners interested in one connection;
- on the aggregated ``redis`` topic for listeners watching every connection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from redis_service.events.types import (
    AGGREGATE_TOPIC,
    TRANSPORT_SIGNALS,
    SignalEvent,
    TransportSignal,
    signal_topic,
)

if TYPE_CHECKING:
    from redis_service.connection.transport import Transport
    from redis_service.events.bus import EventBus


class EventForwarder:
    """Subscribes to every transport signal and forwards it to the bus."""

    def __init__(self, bus: "EventBus", connection_name: str) -> None:
        self._bus = bus
        self._connection_name = connection_name
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribers)

    def attach(self, transport: "Transport") -> None:
        """Start forwarding. Attaching an already attached forwarder is a no-op."""
        if self._unsubscribers:
            return
        for signal in TRANSPORT_SIGNALS:
            self._unsubscribers.append(
                transport.on(signal, self._make_handler(signal))
            )

    def detach(self) -> None:
        """Stop forwarding."""
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def _make_handler(self, signal: TransportSignal) -> Callable[..., None]:
        def forward(*args: Any) -> None:
            self.forward(signal, *args)

        return forward

    def forward(self, signal: TransportSignal, *args: Any) -> None:
        event = SignalEvent(
            connection=self._connection_name,
            signal=signal,
            args=args,
        )
        self._bus.publish(signal_topic(self._connection_name, signal), event)
        self._bus.publish(AGGREGATE_TOPIC, event)
