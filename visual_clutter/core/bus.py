"""
In-process event bus for the control plane.

Carries low-frequency events (frame failures, source loss, lifecycle)
between the pipeline and whoever is observing it. Handlers run
synchronously on the publisher's thread; a failing handler is logged
and does not stop delivery to the others.
"""
import threading
from collections import defaultdict
from typing import Callable, Any, Dict, List, Type

from visual_clutter.utils.logger import Logger


class EventBus:
    """
    Publish/subscribe keyed on the event's class.

    Usage:
        bus = EventBus()
        bus.subscribe(FrameFailed, on_failure)
        bus.publish(FrameFailed(sequence=3, stage="inference", error=err))
    """

    def __init__(self):
        self._subscribers: Dict[Type, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()
        self.logger = Logger("EventBus")

    def subscribe(self, event_type: Type, handler: Callable[[Any], None]) -> Callable[[], None]:
        """
        Register a handler for an event type.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._subscribers[event_type].append(handler)
        self.logger.debug(f"Subscribed {_name(handler)} to {event_type.__name__}")
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Type, handler: Callable[[Any], None]) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any) -> int:
        """
        Deliver an event to every handler registered for its type.

        Returns:
            Number of handlers that completed without raising.
        """
        event_type = type(event)
        with self._lock:
            handlers = list(self._subscribers.get(event_type, []))

        if not handlers:
            self.logger.debug(f"No subscribers for {event_type.__name__}")
            return 0

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in handler {_name(handler)} for {event_type.__name__}: {e}"
                )
            else:
                delivered += 1
        return delivered


def _name(handler: Callable) -> str:
    return getattr(handler, "__qualname__", repr(handler))
