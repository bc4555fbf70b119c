from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List

from dealscout.models import BookmarkEvent

logger = logging.getLogger(__name__)

Listener = Callable[[BookmarkEvent], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("listener",)

    def __init__(self, listener: Listener) -> None:
        self.listener = listener


class BookmarkEventBus:
    """In-process fan-out of bookmark changes to every mounted list.

    Delivery is synchronous and in subscription order. There is no replay:
    a listener that subscribes after ``publish`` never sees that event.
    Listeners must set the flag to the event's value rather than toggle it,
    and must not re-publish from inside a handler.
    """

    def __init__(self) -> None:
        self._subscriptions: List[_Subscription] = []

    def subscribe(self, listener: Listener) -> Unsubscribe:
        # One handle per call, so subscribing the same callable twice needs two unsubscribes.
        handle = _Subscription(listener)
        self._subscriptions.append(handle)

        def unsubscribe() -> None:
            if handle in self._subscriptions:
                self._subscriptions.remove(handle)

        return unsubscribe

    @contextmanager
    def subscription(self, listener: Listener) -> Iterator[None]:
        unsubscribe = self.subscribe(listener)
        try:
            yield
        finally:
            unsubscribe()

    def publish(self, event: BookmarkEvent) -> int:
        """Deliver to current listeners; returns how many were called."""
        delivered = 0
        # Snapshot: listeners added or removed during delivery take effect next time.
        for handle in list(self._subscriptions):
            listener = handle.listener
            try:
                listener(event)
            except Exception:
                logger.exception("Bookmark listener %r failed on %s", listener, event)
            delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)
