"""
EventBus for in-process advisory events.

Sync components publish typed events (see plannersync.events); a UI layer
subscribes to surface toasts and status badges.

Usage:
    bus = EventBus()

    # Subscribe to specific event types
    bus.subscribe('connectivity.offline', lambda event: show_banner(event.message))
    bus.subscribe('edit.failed', lambda event: show_error(event.message))

    # Subscribe to all events
    bus.subscribe('*', lambda event: log_event(event))

    # Publish events
    from plannersync.events import ConnectivityChangedEvent
    bus.publish(ConnectivityChangedEvent(online=False))
"""

from typing import Callable, Dict, List, Any, Optional
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for pub/sub.

    Supports:
    - subscribe(event_type, callback): Register callbacks for specific event types
    - publish(event): Emit events to all matching subscribers
    - Wildcard subscription: subscribe('*', callback) receives all events

    Callbacks run synchronously on the publishing task; a failing callback is
    logged and does not affect the others or the publisher.
    """

    def __init__(self):
        # Dictionary mapping event_type -> list of callbacks
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> Callable[[], bool]:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to listen for (e.g., 'edit.requested')
                       Use '*' to subscribe to all event types
            callback: Function called with event object when event occurs

        Returns:
            Zero-argument callable that removes the subscription
        """
        self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to {event_type}: {getattr(callback, '__name__', 'lambda')}")
        return lambda: self.unsubscribe(event_type, callback)

    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> bool:
        """
        Unsubscribe a callback from an event type.

        Returns:
            True if callback was found and removed, False otherwise
        """
        callbacks = self._subscribers.get(event_type)
        if not callbacks or callback not in callbacks:
            return False
        callbacks.remove(callback)
        if not callbacks:
            del self._subscribers[event_type]
        logger.debug(f"Unsubscribed from {event_type}")
        return True

    def publish(self, event: Any) -> None:
        """
        Publish an event to all matching subscribers.

        Notifies subscribers to the specific event type, then wildcard
        subscribers ('*').

        Args:
            event: Event object (must have 'event_type' attribute)
        """
        if not hasattr(event, 'event_type'):
            logger.warning(f"Event missing 'event_type' attribute: {type(event).__name__}")
            return

        event_type = event.event_type

        # Copy so callbacks may unsubscribe while being notified
        specific_subscribers = list(self._subscribers.get(event_type, []))
        wildcard_subscribers = list(self._subscribers.get('*', []))

        for callback in specific_subscribers + wildcard_subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber callback for {event_type}: {e}", exc_info=True)

        logger.debug(f"Published {event_type} to {len(specific_subscribers) + len(wildcard_subscribers)} subscribers")

    def clear(self) -> None:
        """Clear all subscriptions."""
        self._subscribers.clear()

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        """
        Get count of subscribers.

        Args:
            event_type: Optional event type to count. If None, returns total.
        """
        if event_type:
            return len(self._subscribers.get(event_type, []))
        return sum(len(subs) for subs in self._subscribers.values())


# Global event bus instance
_global_bus = None


def get_event_bus() -> EventBus:
    """Get or create global EventBus instance."""
    global _global_bus
    if _global_bus is None:
        _global_bus = EventBus()
    return _global_bus


def reset_event_bus() -> None:
    """Reset global event bus (mainly for testing)."""
    global _global_bus
    _global_bus = EventBus()


__all__ = ['EventBus', 'get_event_bus', 'reset_event_bus']
