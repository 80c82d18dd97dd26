"""
Observable values.

Each piece of UI-visible state is exposed as an Observable. Core code
calls set(); the UI subscribes. Subscribers run synchronously on the
thread that calls set() (the event loop for everything in the pipeline).
"""

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """A value that notifies subscribers on every set()."""

    def __init__(self, value: T, name: str = ""):
        self._value = value
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Update the value and notify subscribers."""
        self._value = value
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Observer error ({self.name or 'unnamed'}): {e}")

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def __repr__(self) -> str:
        return f"Observable({self.name!r}, {self._value!r})"
