import itertools
import logging
from typing import Callable, Dict, Generic, Optional, TypeVar

from . import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T], None]


class Subscription:
    """Handle returned by `Channel.subscribe`; cancelling twice is a no-op."""

    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel: Optional[Callable[[], None]] = on_cancel

    @property
    def active(self) -> bool:
        return self._on_cancel is not None

    def cancel(self) -> None:
        on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel is not None:
            on_cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.cancel()


class Channel(Generic[T]):
    """Holds the current value of one kind and fans out every publish to its listeners."""

    def __init__(self, name: str, initial: T):
        self.name = name
        self._value = initial
        self._listeners: Dict[int, Listener] = {}
        self._ids = itertools.count()

    @property
    def value(self) -> T:
        return self._value

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener, on_cancel: Optional[Callable[[], None]] = None) -> Subscription:
        key = next(self._ids)
        self._listeners[key] = listener
        metrics.active_subscribers.labels(channel=self.name).inc()

        def remove() -> None:
            if self._listeners.pop(key, None) is not None:
                metrics.active_subscribers.labels(channel=self.name).dec()
            if on_cancel is not None:
                on_cancel()

        subscription = Subscription(remove)
        self._deliver(listener, self._value)
        return subscription

    def publish(self, value: T) -> None:
        self._value = value
        # Snapshot so listeners may (un)subscribe while being notified
        for key, listener in list(self._listeners.items()):
            if key in self._listeners:
                self._deliver(listener, value)

    def _deliver(self, listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception as e:
            metrics.listener_errors_total.labels(channel=self.name).inc()
            logger.error(f"Listener on channel '{self.name}' failed: {e}")
