import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Unsubscribe = Callable[[], None]


class Observable(Generic[T]):
    """
    A value holder that notifies subscribers synchronously on every set.

    Subscribing immediately delivers the current value. A subscriber that
    raises is logged and does not stop the others.
    """

    def __init__(self, value: T):
        self._value = value
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def get(self) -> T:
        return self._value

    def _notify(self, value) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.error("Subscriber %r failed: %s", callback, e)

    def set(self, value: T) -> None:
        self._value = value
        self._notify(value)

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._subscribers.append(callback)
        callback(self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class Derived(Generic[T, R]):
    """Read-only view computed from an Observable on every read and notification."""

    def __init__(self, source: Observable[T], fn: Callable[[T], R]):
        self.source = source
        self.fn = fn

    @property
    def value(self) -> R:
        return self.fn(self.source.value)

    def get(self) -> R:
        return self.value

    def subscribe(self, callback: Callable[[R], None]) -> Unsubscribe:
        return self.source.subscribe(lambda value: callback(self.fn(value)))
