from __future__ import annotations

from typing import Optional


class DealScoutError(Exception):
    """Base class for errors raised by the search engine."""


class GeolocationUnavailable(DealScoutError):
    """Raised by location providers; GeoLocator turns it into the fallback fix."""


class UpstreamError(DealScoutError):
    """The search endpoint could not produce a usable response."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SearchUnavailable(DealScoutError):
    """Network failed and there was nothing cached to fall back to."""


class MalformedFilterState(DealScoutError, ValueError):
    pass
