# backend/placescout/services/geo.py
"""
Geo utilities: great-circle distance, coordinate bucketing and radius checks.

All distances are meters. Functions are pure and shared by the cache,
the deduplicator and the vector stores.
"""
from __future__ import annotations

import math
from typing import Tuple

from ..schemas.places import Coordinates

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Clamp guards against float drift just above 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_m(a: Coordinates, b: Coordinates) -> float:
    return haversine_m(a.lat, a.lon, b.lat, b.lon)


def round_coordinate(value: float, decimals: int) -> float:
    """Round half away from zero so buckets do not depend on float banker's rounding."""
    factor = 10**decimals
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value) if rounded else 0.0


def coordinate_bucket(lat: float, lon: float, decimals: int = 4) -> Tuple[float, float]:
    return round_coordinate(lat, decimals), round_coordinate(lon, decimals)


def round_radius(radius_m: float, step_m: float = 1000.0) -> int:
    """Radius rounded to the nearest step (never below one step)."""
    steps = max(1, int(math.floor(radius_m / step_m + 0.5)))
    return int(steps * step_m)


def within_radius(center: Coordinates, point: Coordinates, radius_m: float) -> bool:
    return distance_m(center, point) <= radius_m


def is_valid_coordinates(lat: object, lon: object) -> bool:
    """Finite, in range and not the (0, 0) null-island placeholder."""
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return False
    return not (lat == 0 and lon == 0)


def parse_coordinates(lat: object, lon: object) -> Coordinates | None:
    """Coordinates from loosely typed provider values, or None when unusable."""
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lon_f = float(lon)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not is_valid_coordinates(lat_f, lon_f):
        return None
    return Coordinates(lat=lat_f, lon=lon_f)
