from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterable, Iterator

from dealscout.models import BookmarkEvent, EntityType, RankedResult
from dealscout.services.bookmarks import BookmarkEventBus

logger = logging.getLogger(__name__)


class BookmarkState(str, Enum):
    UNKNOWN = "unknown"
    BOOKMARKED = "bookmarked"
    NOT_BOOKMARKED = "not_bookmarked"


def _state(flag: bool) -> BookmarkState:
    return BookmarkState.BOOKMARKED if flag else BookmarkState.NOT_BOOKMARKED


class ResultListView:
    """Bookmark flags for one rendered list of restaurants or deals.

    Kept in step with other lists through the bus while mounted. Events only
    ever overwrite a flag, so duplicates and reordering are harmless.
    """

    def __init__(self, bus: BookmarkEventBus, entity_type: EntityType) -> None:
        self.bus = bus
        self.entity_type = entity_type
        self._flags: Dict[int, bool] = {}

    @contextmanager
    def mount(self) -> Iterator["ResultListView"]:
        with self.bus.subscription(self._on_event):
            yield self

    def load(self, results: Iterable[RankedResult]) -> None:
        self._flags = {item.entity.id: item.is_bookmarked for item in results}

    def state(self, entity_id: int) -> BookmarkState:
        flag = self._flags.get(entity_id)
        return BookmarkState.UNKNOWN if flag is None else _state(flag)

    def set_bookmarked(self, entity_id: int, is_bookmarked: bool) -> None:
        """Local user action: update right away, then tell every other list.

        Ids this list never loaded stay UNKNOWN; there is nothing rendered to toggle.
        """
        if entity_id not in self._flags:
            logger.debug("Ignoring bookmark toggle for unloaded %s %s", self.entity_type.value, entity_id)
            return
        self._flags[entity_id] = is_bookmarked
        self.bus.publish(
            BookmarkEvent(entity_id=entity_id, entity_type=self.entity_type, is_bookmarked=is_bookmarked)
        )

    def _on_event(self, event: BookmarkEvent) -> None:
        if event.entity_type is not self.entity_type or event.entity_id not in self._flags:
            return
        self._flags[event.entity_id] = event.is_bookmarked
        logger.debug("%s %s -> %s", self.entity_type.value, event.entity_id, _state(event.is_bookmarked).value)
