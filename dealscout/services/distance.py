"""Great-circle distance helpers."""
from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dealscout.models import Coordinates

EARTH_RADIUS_KM = 6371.0

_TENTH = Decimal("0.1")
# Anything that would round to 1000.0 km switches to whole kilometres.
_COARSE_FROM = Decimal("999.95")


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Distance in kilometers between two WGS84 coords (haversine)."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def distance_between(a: Optional[Coordinates], b: Optional[Coordinates]) -> Optional[float]:
    if a is None or b is None:
        return None
    return distance_km(a, b)


def format_distance(km: float) -> str:
    if not math.isfinite(km) or km < 0:
        raise ValueError(f"Distance must be a finite non-negative number, got {km!r}")

    # repr() gives the shortest round-tripping decimal, so 2.25 stays 2.25 here
    exact = Decimal(repr(float(km)))
    if exact < _COARSE_FROM:
        return f"{exact.quantize(_TENTH, rounding=ROUND_HALF_UP)} km"
    whole = int(exact.to_integral_value(rounding=ROUND_HALF_UP))
    return f"{whole:,} km"
