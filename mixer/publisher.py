"""
Last-value publish/subscribe channel.

Every publication is a full snapshot, not a diff; a subscriber that joins
late is called immediately with the current value so it can render from
that alone.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]


class Channel(Generic[T]):
    def __init__(self, name: str, initial: T) -> None:
        self.name = name
        self._value = initial
        self._subscribers: List[Subscriber] = []
        self.publish_count = 0

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, callback: Subscriber, replay: bool = True) -> Callable[[], None]:
        """
        Register ``callback``; returns an unsubscribe function.

        With ``replay`` the callback receives the current value right away.
        """
        self._subscribers.append(callback)
        if replay:
            self._deliver(callback, self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> None:
        self._value = value
        self.publish_count += 1
        for callback in list(self._subscribers):
            self._deliver(callback, value)

    def _deliver(self, callback: Subscriber, value: T) -> None:
        # a failing subscriber must not starve the others
        try:
            callback(value)
        except Exception:
            logger.exception(f"Subscriber on '{self.name}' raised")
