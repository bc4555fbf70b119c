from __future__ import annotations

import itertools
from typing import Optional

from dealscout.models import FilterState, ShowType, SortBy
from dealscout.services.request import validate_filters

# What the filter sheet offers; None is "Any distance".
DISTANCE_OPTIONS = (None, 1, 5, 10, 25)


def active_filter_count(filters: FilterState) -> int:
    return (
        (filters.distance_km is not None)
        + bool(filters.cuisine_ids)
        + bool(filters.dietary_ids)
        + (filters.show_type is not ShowType.ALL)
        + (filters.sort_by is not SortBy.RELEVANCE)
    )


class FilterSession:
    """Applied filters for one page plus the draft being edited in the filter sheet.

    Edits only ever touch the draft. Nothing reaches ``applied`` (and so
    nothing triggers a search) until ``apply()``.
    """

    def __init__(self, applied: Optional[FilterState] = None) -> None:
        self.applied = applied or FilterState()
        self.draft: Optional[FilterState] = None

    def edit(self) -> FilterState:
        if self.draft is None:
            self.draft = self.applied.model_copy(deep=True)
        return self.draft

    def set_query(self, query: str) -> None:
        self.edit().query = query

    def set_distance(self, distance_km: Optional[float]) -> None:
        self.edit().distance_km = distance_km

    def set_show_type(self, show_type: ShowType) -> None:
        self.edit().show_type = show_type

    def set_sort_by(self, sort_by: SortBy) -> None:
        self.edit().sort_by = sort_by

    def toggle_cuisine(self, cuisine_id: int) -> None:
        draft = self.edit()
        draft.cuisine_ids = draft.cuisine_ids ^ {cuisine_id}

    def toggle_dietary(self, dietary_id: int) -> None:
        draft = self.edit()
        draft.dietary_ids = draft.dietary_ids ^ {dietary_id}

    def clear_draft(self) -> None:
        self.draft = FilterState(query=self.edit().query)

    def discard(self) -> None:
        self.draft = None

    def apply(self) -> FilterState:
        """Commit the draft. A malformed draft raises and stays uncommitted."""
        if self.draft is not None:
            validate_filters(self.draft)
            self.applied = self.draft
            self.draft = None
        return self.applied


class RequestSequencer:
    """Hands out increasing tickets so a caller can ignore responses that lost the race."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.latest = 0

    def next(self) -> int:
        self.latest = next(self._counter)
        return self.latest

    def is_current(self, ticket: int) -> bool:
        return ticket == self.latest
