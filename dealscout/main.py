from __future__ import annotations

from functools import lru_cache
from typing import AsyncIterator, Optional, Set

import aiohttp
from fastapi import Depends, FastAPI, HTTPException, Query

from dealscout.config import get_settings
from dealscout.errors import MalformedFilterState, SearchUnavailable
from dealscout.models import BookmarkEvent, Coordinates, FilterState, SearchResultSet, ShowType, SortBy
from dealscout.services.bookmarks import BookmarkEventBus
from dealscout.services.cache import MemoryBackend, ResultCache, SqliteBackend
from dealscout.services.client import SearchClient
from dealscout.services.distance import distance_km, format_distance
from dealscout.services.geo import GeoLocator, IpLocationProvider, LocationProvider, StaticLocationProvider
from dealscout.services.search import SearchOrchestrator

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Search, filter and distance-rank restaurant deals, with offline fallback.",
)

_IDS_PATTERN = r"^\d+(,\d+)*$"


@lru_cache
def get_result_cache() -> ResultCache[SearchResultSet]:
    backend = (
        SqliteBackend(settings.cache_db_path)
        if settings.cache_db_path
        else MemoryBackend(max_size=settings.cache_max_size)
    )
    return ResultCache(backend, SearchResultSet, schema_version=settings.cache_schema_version)


@lru_cache
def get_bookmark_bus() -> BookmarkEventBus:
    return BookmarkEventBus()


async def get_http_session() -> AsyncIterator[aiohttp.ClientSession]:
    async with aiohttp.ClientSession() as session:
        yield session


def _geolocator(provider: Optional[LocationProvider]) -> GeoLocator:
    return GeoLocator(
        provider,
        fallback=Coordinates(latitude=settings.fallback_latitude, longitude=settings.fallback_longitude),
        timeout_s=settings.geolocation_timeout_s,
        max_age_s=settings.geolocation_max_age_s,
    )


@lru_cache
def get_geolocator() -> GeoLocator:
    """One locator per process so a live fix is reused across searches."""
    provider: Optional[LocationProvider] = None
    if settings.geolocation_url:
        provider = IpLocationProvider(str(settings.geolocation_url), user_agent=settings.user_agent)
    return _geolocator(provider)


def get_orchestrator(
    latitude: Optional[float] = Query(None, ge=-90.0, le=90.0),
    longitude: Optional[float] = Query(None, ge=-180.0, le=180.0),
    session: aiohttp.ClientSession = Depends(get_http_session),
    cache: ResultCache[SearchResultSet] = Depends(get_result_cache),
    shared_geolocator: GeoLocator = Depends(get_geolocator),
) -> SearchOrchestrator:
    geolocator = shared_geolocator
    if latitude is not None and longitude is not None:
        geolocator = _geolocator(StaticLocationProvider(Coordinates(latitude=latitude, longitude=longitude)))

    client = SearchClient(
        session,
        base_url=str(settings.api_base_url),
        search_path=settings.search_path,
        timeout_s=settings.http_timeout_s,
        user_agent=settings.user_agent,
        token=settings.api_token,
    )
    return SearchOrchestrator(
        client,
        cache,
        geolocator=geolocator,
        ttl_minutes=settings.cache_ttl_minutes,
        page_limit=settings.default_page_limit,
    )


def _parse_ids(raw: Optional[str]) -> Set[int]:
    return {int(part) for part in raw.split(",")} if raw else set()


@app.get("/", tags=["Root"])
async def root():
    return {"ok": True, "service": settings.app_name, "version": settings.version}


@app.get("/health", tags=["Healthcheck"])
async def health():
    return {"ok": True}


@app.get("/api/search", response_model=SearchResultSet, tags=["Api Search"])
async def api_search(
    query: str = Query("", max_length=200),
    show_type: ShowType = Query(ShowType.ALL, alias="showType"),
    sort_by: SortBy = Query(SortBy.RELEVANCE, alias="sortBy"),
    distance: Optional[float] = Query(None, description="Radius in km; omit for any distance"),
    cuisine_ids: Optional[str] = Query(None, alias="cuisineIds", pattern=_IDS_PATTERN),
    dietary_ids: Optional[str] = Query(None, alias="dietaryPreferenceIds", pattern=_IDS_PATTERN),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    has_active_deals: bool = Query(False, alias="hasActiveDeals"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
):
    filters = FilterState(
        query=query,
        show_type=show_type,
        sort_by=sort_by,
        distance_km=distance,
        cuisine_ids=_parse_ids(cuisine_ids),
        dietary_ids=_parse_ids(dietary_ids),
    )
    try:
        return await orchestrator.search(filters, page=page, limit=limit, has_active_deals=has_active_deals)
    except MalformedFilterState as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SearchUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Search unavailable: {e}")


@app.get("/api/distance", tags=["Api Distance"])
async def api_distance(
    lat1: float = Query(..., ge=-90.0, le=90.0),
    lon1: float = Query(..., ge=-180.0, le=180.0),
    lat2: float = Query(..., ge=-90.0, le=90.0),
    lon2: float = Query(..., ge=-180.0, le=180.0),
):
    km = distance_km(Coordinates(latitude=lat1, longitude=lon1), Coordinates(latitude=lat2, longitude=lon2))
    return {"distance_km": km, "label": format_distance(km)}


@app.post("/api/bookmarks", tags=["Api Bookmarks"])
async def api_bookmarks(event: BookmarkEvent, bus: BookmarkEventBus = Depends(get_bookmark_bus)):
    """Broadcast a bookmark change to every list mounted in this process."""
    delivered = bus.publish(event)
    return {"ok": True, "delivered": delivered}
