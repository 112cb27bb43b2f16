"""Synchronous observer channel.

Subscribers are plain callables invoked in subscription order on the
publisher's thread of control. A failing subscriber is logged and does not
stop delivery to the others, nor does it propagate into the publisher.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from agentstream.observability.logging import get_logger

T = TypeVar("T")

_log = get_logger(__name__)


class Channel(Generic[T]):
    def __init__(self, name: str) -> None:
        self._name = name
        self._subscribers: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:  # noqa: BLE001
                _log.exception("subscriber_failed", channel=self._name)
