from __future__ import annotations

from typing import Any, Dict, List, Optional

import aiohttp
import pytest
from aiohttp import test_utils, web

from dealscout.errors import MalformedFilterState, SearchUnavailable, UpstreamError
from dealscout.models import (
    Coordinates,
    FilterState,
    SearchPayload,
    SearchRequestDescriptor,
    SearchResultSet,
    ShowType,
    SortBy,
)
from dealscout.services.cache import MemoryBackend, ResultCache
from dealscout.services.client import SearchClient
from dealscout.services.geo import GeoLocator, StaticLocationProvider
from dealscout.services.search import SearchOrchestrator, rank, sort_by_rating

HERE = Coordinates(latitude=43.6532, longitude=-79.3832)

PAYLOAD: Dict[str, Any] = {
    "restaurants": [
        {"id": 3, "name": "Pho Town", "latitude": "43.6600", "longitude": "-79.3900", "ratingAvg": 4.0},
        {"id": 1, "name": "No Rating Diner", "latitude": None, "longitude": None, "isBookmarked": True},
        {"id": 2, "name": "Taco Stand", "latitude": 43.7, "longitude": -79.4, "ratingAvg": 4.0},
    ],
    "deals": [
        {
            "id": 10,
            "title": "2 for 1 tacos",
            "restaurant": {"id": 2, "name": "Taco Stand", "latitude": 43.7, "longitude": -79.4, "ratingAvg": 4.0},
            "isBookmarked": False,
        }
    ],
    "pagination": {"restaurants": {"page": 1, "limit": 20, "total": 3, "totalPages": 1}},
}


class FakeBackend:
    def __init__(self, payload: Optional[Dict[str, Any]] = None) -> None:
        self.payload = payload if payload is not None else PAYLOAD
        self.error: Optional[Exception] = None
        self.calls: List[SearchRequestDescriptor] = []

    async def search(self, descriptor: SearchRequestDescriptor) -> SearchPayload:
        self.calls.append(descriptor)
        if self.error is not None:
            raise self.error
        return SearchPayload.model_validate(self.payload)


def _orchestrator(backend, ttl_minutes: float = 24 * 60) -> SearchOrchestrator:
    return SearchOrchestrator(
        backend,
        ResultCache(MemoryBackend(), SearchResultSet),
        geolocator=GeoLocator(StaticLocationProvider(HERE)),
        ttl_minutes=ttl_minutes,
    )


@pytest.mark.asyncio
async def test_results_are_annotated_with_distance():
    results = await _orchestrator(FakeBackend()).search(FilterState())

    by_id = {r.id: r for r in results.restaurants}
    assert by_id[3].distance_km == pytest.approx(0.93, abs=0.02)
    assert by_id[1].distance_km is None
    assert by_id[1].is_bookmarked is True
    # distance is only computed for restaurants
    assert results.deals[0].distance_km is None
    assert results.stale is False
    assert len(results) == 4


@pytest.mark.asyncio
async def test_relevance_keeps_server_order():
    results = await _orchestrator(FakeBackend()).search(FilterState(sort_by=SortBy.RELEVANCE))
    assert [r.id for r in results.restaurants] == [3, 1, 2]


@pytest.mark.asyncio
async def test_rating_sort_puts_unrated_last_and_breaks_ties_by_id():
    results = await _orchestrator(FakeBackend()).search(FilterState(sort_by=SortBy.RATING))
    assert [r.id for r in results.restaurants] == [2, 3, 1]


def test_sort_by_rating_on_deals_uses_restaurant_rating():
    payload = SearchPayload.model_validate(
        {
            "deals": [
                {"id": 5, "title": "a", "restaurant": {"id": 1, "name": "x"}},
                {"id": 4, "title": "b", "restaurant": {"id": 2, "name": "y", "ratingAvg": 3.5}},
                {"id": 6, "title": "c", "restaurant": {"id": 3, "name": "z", "ratingAvg": 4.5}},
            ]
        }
    )

    ranked = rank(payload, HERE, SortBy.RATING)
    assert [d.id for d in ranked.deals] == [6, 4, 5]
    assert [d.id for d in sort_by_rating(ranked.deals)] == [6, 4, 5]


@pytest.mark.asyncio
async def test_network_failure_serves_cached_results():
    backend = FakeBackend()
    orchestrator = _orchestrator(backend)
    filters = FilterState(cuisine_ids={3, 1}, show_type=ShowType.DEALS)

    fresh = await orchestrator.search(filters)

    backend.error = UpstreamError("connection reset")
    cached = await orchestrator.search(FilterState(cuisine_ids={1, 3}, show_type=ShowType.DEALS))

    assert cached.stale is True
    assert cached.model_copy(update={"stale": False}) == fresh
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_failure_without_cache_raises_search_unavailable():
    backend = FakeBackend()
    backend.error = UpstreamError("HTTP 502", status=502)

    with pytest.raises(SearchUnavailable):
        await _orchestrator(backend).search(FilterState())


@pytest.mark.asyncio
async def test_other_filters_do_not_hit_the_cache():
    backend = FakeBackend()
    orchestrator = _orchestrator(backend)
    await orchestrator.search(FilterState(query="tacos"))

    backend.error = UpstreamError("offline")
    with pytest.raises(SearchUnavailable):
        await orchestrator.search(FilterState(query="pho"))


@pytest.mark.asyncio
async def test_expired_cache_is_not_used():
    backend = FakeBackend()
    orchestrator = _orchestrator(backend, ttl_minutes=0)
    await orchestrator.search(FilterState())

    backend.error = UpstreamError("offline")
    with pytest.raises(SearchUnavailable):
        await orchestrator.search(FilterState())


@pytest.mark.asyncio
async def test_malformed_filters_never_reach_the_network():
    backend = FakeBackend()

    with pytest.raises(MalformedFilterState):
        await _orchestrator(backend).search(FilterState(distance_km=-3))
    assert backend.calls == []


@pytest.mark.asyncio
async def test_without_geolocator_location_is_omitted():
    backend = FakeBackend()
    orchestrator = SearchOrchestrator(backend, ResultCache(MemoryBackend(), SearchResultSet))

    results = await orchestrator.search(FilterState())
    assert backend.calls[0].latitude is None
    assert all(r.distance_km is None for r in results.restaurants)


@pytest.mark.asyncio
async def test_fallback_location_still_finds_results_cached_from_last_fix():
    backend = FakeBackend()
    montreal = Coordinates(latitude=45.5017, longitude=-73.5673)
    provider = StaticLocationProvider(montreal)
    orchestrator = SearchOrchestrator(
        backend,
        ResultCache(MemoryBackend(), SearchResultSet),
        geolocator=GeoLocator(provider, max_age_s=0),
    )
    fresh = await orchestrator.search(FilterState(query="tacos"))

    # location and network go down together
    provider.coordinates = None
    backend.error = UpstreamError("offline")
    cached = await orchestrator.search(FilterState(query="tacos"))

    assert backend.calls[-1].latitude != montreal.latitude
    assert cached.stale is True
    assert [r.id for r in cached.restaurants] == [r.id for r in fresh.restaurants]


class _SearchServer:
    """Stand-in for the deals API."""

    def __init__(self) -> None:
        self.status = 200
        self.body: Any = {"success": True, "data": PAYLOAD}
        self.requests: List[web.Request] = []
        app = web.Application()
        app.router.add_get("/api/search", self.handle)
        self.server = test_utils.TestServer(app)

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(request)
        if isinstance(self.body, str):
            return web.Response(text=self.body, status=self.status, content_type="application/json")
        return web.json_response(self.body, status=self.status)

    async def __aenter__(self) -> "_SearchServer":
        await self.server.start_server()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.server.close()

    @property
    def base_url(self) -> str:
        return str(self.server.make_url("/api"))


@pytest.mark.asyncio
async def test_client_sends_descriptor_params_and_token():
    async with _SearchServer() as api, aiohttp.ClientSession() as session:
        client = SearchClient(session, base_url=api.base_url, token="secret")
        descriptor = SearchRequestDescriptor(query="pho", cuisine_ids=(1, 2), distance_km=5.0)

        payload = await client.search(descriptor)

        assert [r.id for r in payload.restaurants] == [3, 1, 2]
        request = api.requests[0]
        assert request.query["query"] == "pho"
        assert request.query["cuisineIds"] == "1,2"
        assert request.query["distance"] == "5"
        assert request.headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_client_accepts_bare_payload():
    async with _SearchServer() as api, aiohttp.ClientSession() as session:
        api.body = PAYLOAD
        payload = await SearchClient(session, base_url=api.base_url).search(SearchRequestDescriptor())
        assert len(payload.deals) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body",
    [
        (200, {"success": False, "error": "Search index offline"}),
        (500, {"success": False, "error": "boom"}),
        (503, "<html>bad gateway</html>"),
        (200, {"success": True, "data": {"restaurants": "nope"}}),
        (200, "[1, 2, 3]"),
    ],
)
async def test_client_failures_are_upstream_errors(status, body):
    async with _SearchServer() as api, aiohttp.ClientSession() as session:
        api.status = status
        api.body = body
        with pytest.raises(UpstreamError):
            await SearchClient(session, base_url=api.base_url).search(SearchRequestDescriptor())


@pytest.mark.asyncio
async def test_offline_end_to_end_with_real_client():
    cache = ResultCache(MemoryBackend(), SearchResultSet)
    async with _SearchServer() as api, aiohttp.ClientSession() as session:
        orchestrator = SearchOrchestrator(
            SearchClient(session, base_url=api.base_url),
            cache,
            geolocator=GeoLocator(StaticLocationProvider(HERE)),
        )
        first = await orchestrator.search(FilterState(query="tacos"))
        assert first.stale is False

        api.status = 500
        api.body = {"success": False, "error": "down"}
        second = await orchestrator.search(FilterState(query=" tacos "))

    assert second.stale is True
    assert [r.id for r in second.restaurants] == [r.id for r in first.restaurants]
