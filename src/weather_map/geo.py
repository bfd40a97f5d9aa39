"""Geographic utility functions — pure Python, no external deps."""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0

# 3 decimal places ≈ 110 m, the resolution shared by every coordinate cache key
COORDINATE_PLACES = 3


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points on Earth in kilometers.

    Uses the Haversine formula. Inputs are WGS84 decimal degrees.
    NaN inputs yield NaN.
    """
    rlat1, rlon1 = math.radians(lat1), math.radians(lon1)
    rlat2, rlon2 = math.radians(lat2), math.radians(lon2)

    dlat = rlat2 - rlat1
    dlon = rlon2 - rlon1

    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def quantize(value: float, places: int = COORDINATE_PLACES) -> float:
    """Round half-up to ``places`` decimals (-0.1275 → -0.127, not banker's rounding)."""
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def coordinate_key(lat: float, lon: float, prefix: str = "") -> str:
    """Cache key for an already-quantized coordinate, e.g. ``nearest:48.857,2.352``."""
    key = f"{lat:.{COORDINATE_PLACES}f},{lon:.{COORDINATE_PLACES}f}"
    return f"{prefix}:{key}" if prefix else key
