"""
Lightweight event bus for decoupled fact/status change notifications.

Follows publisher-subscriber pattern so the stores never know who is
listening. In practice the only consumer is the Incremental Recompute
Controller, but tests and callers may subscribe too.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- One bus per session: nothing here is process-global
- Synchronous: a conversation is serial, handlers run inline
- Type-safe events via msgspec

Architecture:
    FactStore / ServiceStatusStore -> EventBus -> [RecomputeController, ...]

Usage:
    bus = EventBus()
    bus.subscribe(EventType.FACT_SET, lambda event: print(event.key))
    bus.publish(ChangeEvent(
        type=EventType.FACT_SET,
        key="savings",
        old_value=None,
        new_value=12000,
        timestamp=time.time(),
    ))
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
from collections import defaultdict
import logging


logger = logging.getLogger("wayfinder.event_bus")


class EventType(str, Enum):
    """Types of events published by the session stores."""
    FACT_SET = "fact_set"
    SERVICE_STATUS_SET = "service_status_set"


class ChangeEvent(msgspec.Struct, kw_only=True, frozen=True):
    """
    Event emitted when a fact or a service status changes value.

    Attributes:
        type: FACT_SET or SERVICE_STATUS_SET
        key: Fact key, or the service id for status changes
        old_value: Previous value (None if never set)
        new_value: Value now stored
        timestamp: Unix timestamp when the change happened
    """
    type: EventType
    key: str
    old_value: Any = None
    new_value: Any = None
    timestamp: float = 0.0


Handler = Callable[[ChangeEvent], None]


class EventBus:
    """
    Session-scoped event bus for store mutations.

    Thread Safety:
        NOT thread-safe. A bus belongs to exactly one session, and a
        session is driven by one conversation at a time.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """
        Subscribe to events with a synchronous handler.

        Subscribing the same handler twice is a no-op.
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed handler to {event_type.value}")

    def publish(self, event: ChangeEvent) -> None:
        """
        Publish an event to all subscribers, in subscription order.

        Exceptions in handlers are logged but don't propagate: a broken
        subscriber must not prevent the store write that triggered it.
        """
        logger.debug(f"Publishing {event.type.value} for {event.key}")

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in handler for {event.type.value} ({event.key}): {e}",
                    exc_info=True
                )

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        """Remove a handler (must be the same instance that subscribed)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        """Clear all subscribers for an event type (or all types)."""
        if event_type is None:
            self._subscribers.clear()
        else:
            self._subscribers[event_type].clear()

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Number of subscribers for an event type (None = all types)."""
        if event_type is None:
            return sum(len(handlers) for handlers in self._subscribers.values())
        return len(self._subscribers[event_type])
