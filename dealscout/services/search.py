from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from dealscout.errors import SearchUnavailable, UpstreamError
from dealscout.models import (
    Coordinates,
    Deal,
    FilterState,
    RankedResult,
    Restaurant,
    SearchPayload,
    SearchRequestDescriptor,
    SearchResultSet,
    SortBy,
)
from dealscout.services.cache import DEFAULT_TTL_MINUTES, CacheHit, ResultCache
from dealscout.services.distance import distance_between
from dealscout.services.geo import GeoLocator, coordinates_from
from dealscout.services.request import build_request

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    async def search(self, descriptor: SearchRequestDescriptor) -> SearchPayload: ...


def sort_by_rating(results: Sequence[RankedResult]) -> List[RankedResult]:
    """Highest rating first, unrated last, ties by id so the order is stable across runs."""

    def key(item: RankedResult):
        rating = item.entity.rating
        return (rating is None, -(rating or 0.0), item.entity.id)

    return sorted(results, key=key)


def rank(payload: SearchPayload, origin: Optional[Coordinates], sort_by: SortBy) -> SearchResultSet:
    # Distance is a restaurant concept; deals only inherit it through their restaurant page.
    restaurants = [
        RankedResult[Restaurant](
            entity=r,
            distance_km=distance_between(origin, coordinates_from(r.latitude, r.longitude)),
            is_bookmarked=bool(r.is_bookmarked),
        )
        for r in payload.restaurants
    ]
    deals = [RankedResult[Deal](entity=d, is_bookmarked=bool(d.is_bookmarked)) for d in payload.deals]

    if sort_by is SortBy.RATING:
        restaurants = sort_by_rating(restaurants)
        deals = sort_by_rating(deals)
    return SearchResultSet(restaurants=restaurants, deals=deals, pagination=payload.pagination)


class SearchOrchestrator:
    """Runs one search: locate, build, fetch, rank, cache; falls back to cache when the fetch fails.

    No retries and no cancellation of earlier calls. Callers that fire
    several searches should drop stale responses themselves (see
    RequestSequencer). Cancelling the task awaiting ``search`` aborts the
    HTTP request.
    """

    def __init__(
        self,
        backend: SearchBackend,
        cache: ResultCache[SearchResultSet],
        *,
        geolocator: Optional[GeoLocator] = None,
        ttl_minutes: float = DEFAULT_TTL_MINUTES,
        page_limit: int = 20,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.geolocator = geolocator
        self.ttl_minutes = ttl_minutes
        self.page_limit = page_limit

    async def search(
        self,
        filters: FilterState,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        has_active_deals: bool = False,
    ) -> SearchResultSet:
        coords = await self.geolocator.get_current_location() if self.geolocator is not None else None
        descriptor = build_request(
            filters,
            coords,
            page=page,
            limit=limit or self.page_limit,
            has_active_deals=has_active_deals,
        )
        cache_key = descriptor.cache_key()

        try:
            payload = await self.backend.search(descriptor)
        except UpstreamError as e:
            # Only now, after the network has definitely failed, look at the cache.
            found = self.cache.lookup(cache_key)
            if not isinstance(found, CacheHit) and self._located_by_fallback():
                # Same filters, searched earlier from the last real position.
                earlier = build_request(
                    filters,
                    self.geolocator.last_live_fix,
                    page=page,
                    limit=descriptor.limit,
                    has_active_deals=has_active_deals,
                )
                found = self.cache.lookup(earlier.cache_key())
            if isinstance(found, CacheHit):
                logger.info("Search failed (%s); serving cached results for %s", e, descriptor.canonical())
                return found.value.model_copy(update={"stale": True})
            logger.warning("Search failed (%s) and nothing usable cached (%s)", e, found.reason.value)
            raise SearchUnavailable(str(e)) from e

        results = rank(payload, coords, filters.sort_by)
        self.cache.set(cache_key, results, self.ttl_minutes)
        return results

    def _located_by_fallback(self) -> bool:
        return (
            self.geolocator is not None
            and self.geolocator.last_fix_was_fallback
            and self.geolocator.last_live_fix is not None
        )
