from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Protocol, Tuple

import aiohttp
from pydantic import ValidationError

from dealscout.errors import GeolocationUnavailable
from dealscout.models import Coordinates

logger = logging.getLogger(__name__)

# Toronto city hall; used whenever a live fix can't be had.
DEFAULT_COORDINATES = Coordinates(latitude=43.6532, longitude=-79.3832)


def coordinates_from(latitude: Any, longitude: Any) -> Optional[Coordinates]:
    """Build Coordinates from loosely typed values, or None if they don't make a valid point."""
    if latitude is None or longitude is None:
        return None
    try:
        return Coordinates(latitude=latitude, longitude=longitude)
    except ValidationError:
        return None


class LocationProvider(Protocol):
    async def locate(self) -> Coordinates:
        """Return a live fix or raise GeolocationUnavailable."""
        ...


class StaticLocationProvider:
    """A fix handed to us by the caller (e.g. the device reported it)."""

    def __init__(self, coordinates: Optional[Coordinates]) -> None:
        self.coordinates = coordinates

    async def locate(self) -> Coordinates:
        if self.coordinates is None:
            raise GeolocationUnavailable("No device location supplied")
        return self.coordinates


class IpLocationProvider:
    """Approximate location from an IP geolocation service (ipapi-style JSON)."""

    def __init__(
        self, url: str, *, user_agent: str, session: Optional[aiohttp.ClientSession] = None
    ) -> None:
        # Without a session each lookup opens its own, so one provider can outlive any request.
        self.url = url
        self.user_agent = user_agent
        self.session = session

    async def locate(self) -> Coordinates:
        if self.session is not None:
            return await self._lookup(self.session)
        async with aiohttp.ClientSession() as session:
            return await self._lookup(session)

    async def _lookup(self, session: aiohttp.ClientSession) -> Coordinates:
        headers = {"User-Agent": self.user_agent}
        try:
            async with session.get(self.url, headers=headers) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise GeolocationUnavailable(f"IP geolocation failed: {e}") from e

        if not isinstance(data, dict):
            raise GeolocationUnavailable("IP geolocation returned an unexpected body")
        coords = coordinates_from(
            data.get("latitude", data.get("lat")),
            data.get("longitude", data.get("lon")),
        )
        if coords is None:
            raise GeolocationUnavailable("IP geolocation returned no usable coordinates")
        return coords


class GeoLocator:
    """Resolves the user's position, never failing.

    One attempt per call, bounded by ``timeout_s``. A live fix is reused for
    ``max_age_s``; the fallback is never remembered, so the next call tries
    the provider again. ``provider=None`` means the environment can't locate
    at all.
    """

    def __init__(
        self,
        provider: Optional[LocationProvider] = None,
        *,
        fallback: Coordinates = DEFAULT_COORDINATES,
        timeout_s: float = 10.0,
        max_age_s: float = 600.0,
    ) -> None:
        self.provider = provider
        self.fallback = fallback
        self.timeout_s = timeout_s
        self.max_age_s = max_age_s
        self.last_fix_was_fallback = False
        self._last_fix: Optional[Tuple[Coordinates, float]] = None
        # Kept past max_age_s; lets a fallback search still find results cached under it.
        self.last_live_fix: Optional[Coordinates] = None

    async def get_current_location(self) -> Coordinates:
        if self._last_fix is not None:
            coords, fixed_at = self._last_fix
            if time.monotonic() - fixed_at < self.max_age_s:
                self.last_fix_was_fallback = False
                return coords

        if self.provider is None:
            logger.info("Geolocation not supported, using fallback %s", self.fallback)
            return self._use_fallback()

        try:
            coords = await asyncio.wait_for(self.provider.locate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Geolocation timed out after %.1fs, using fallback", self.timeout_s)
            return self._use_fallback()
        except Exception as e:
            logger.warning("Geolocation unavailable (%r), using fallback", e)
            return self._use_fallback()

        self._last_fix = (coords, time.monotonic())
        self.last_live_fix = coords
        self.last_fix_was_fallback = False
        return coords

    def forget(self) -> None:
        self._last_fix = None

    def _use_fallback(self) -> Coordinates:
        self.last_fix_was_fallback = True
        return self.fallback
