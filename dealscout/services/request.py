from __future__ import annotations

import math
from typing import Iterable, Optional, Tuple

from dealscout.errors import MalformedFilterState
from dealscout.models import Coordinates, FilterState, SearchRequestDescriptor, SortOrder

# ~11 cm; enough to keep a jittery fix on the same cache entry.
COORDINATE_PRECISION = 6


def _canonical_ids(ids: Iterable[int]) -> Tuple[int, ...]:
    return tuple(sorted(set(ids)))


def validate_filters(filters: FilterState) -> None:
    distance = filters.distance_km
    if distance is not None and (not math.isfinite(distance) or distance <= 0):
        # 0 would mean "exactly where I stand"; "no limit" is None.
        raise MalformedFilterState(f"distance_km must be a positive number or None, got {distance!r}")


def build_request(
    filters: FilterState,
    coords: Optional[Coordinates],
    *,
    page: int = 1,
    limit: int = 20,
    sort_order: SortOrder = SortOrder.DESC,
    has_active_deals: bool = False,
) -> SearchRequestDescriptor:
    """Turn a FilterState (plus where the user is, if known) into a request descriptor.

    Filters are passed through as chosen; only their form is normalized:
    the query is trimmed and dropped when empty, id sets are de-duplicated and
    sorted, and a missing distance or location is left out entirely.
    """
    validate_filters(filters)
    if page < 1 or limit < 1:
        raise MalformedFilterState(f"page and limit must be >= 1, got page={page} limit={limit}")

    query = filters.query.strip()
    return SearchRequestDescriptor(
        query=query or None,
        show_type=filters.show_type,
        sort_by=filters.sort_by,
        sort_order=sort_order,
        latitude=round(coords.latitude, COORDINATE_PRECISION) if coords is not None else None,
        longitude=round(coords.longitude, COORDINATE_PRECISION) if coords is not None else None,
        distance_km=filters.distance_km,
        cuisine_ids=_canonical_ids(filters.cuisine_ids),
        dietary_ids=_canonical_ids(filters.dietary_ids),
        page=page,
        limit=limit,
        has_active_deals=has_active_deals,
    )
