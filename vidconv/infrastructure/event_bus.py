import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from vidconv.domain.events import Event

logger = logging.getLogger(__name__)


class EventBus:
    """A simple synchronous event bus for decoupled communication.

    Publishing happens on whatever thread calls `publish` (request threads
    and progress readers), so the subscriber table is guarded by a lock and
    snapshotted before delivery. A failing subscriber is logged and skipped.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]) -> None:
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Event):
        """Publishes an event to subscribers of its type and of any base event type."""
        with self._lock:
            callbacks = [
                cb
                for event_type, cbs in self._subscribers.items()
                if isinstance(event, event_type)
                for cb in cbs
            ]
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event subscriber for {type(event).__name__}: {e}")
