"""Great-circle helpers for the discovery distance filter."""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

EARTH_RADIUS_KM = 6371.0


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    # ``None`` when the box touches a pole or wraps the antimeridian; the
    # caller must then skip the longitude prefilter.
    min_lon: Optional[float]
    max_lon: Optional[float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance in kilometres between two points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    sin_dphi = math.sin(dphi / 2.0)
    sin_dlambda = math.sin(dlambda / 2.0)
    a = sin_dphi * sin_dphi + math.cos(phi1) * math.cos(phi2) * sin_dlambda * sin_dlambda
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return EARTH_RADIUS_KM * c


def within_distance(distance_km: float, max_distance_km: float) -> bool:
    """Distance filter predicate.  The boundary is inclusive."""
    return distance_km <= max_distance_km


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """Smallest lat/lon box containing every point within ``radius_km``.

    Used only as an index-friendly SQL prefilter; the exact haversine check
    runs afterwards.
    """
    angular = radius_km / EARTH_RADIUS_KM
    lat_r = math.radians(lat)

    min_lat_r = lat_r - angular
    max_lat_r = lat_r + angular

    if min_lat_r <= -math.pi / 2 or max_lat_r >= math.pi / 2:
        return BoundingBox(
            max(-90.0, math.degrees(min_lat_r)),
            min(90.0, math.degrees(max_lat_r)),
            None,
            None,
        )

    delta_lon = math.asin(math.sin(angular) / math.cos(lat_r))
    min_lon = lon - math.degrees(delta_lon)
    max_lon = lon + math.degrees(delta_lon)

    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(math.degrees(min_lat_r), math.degrees(max_lat_r), None, None)

    return BoundingBox(
        math.degrees(min_lat_r),
        math.degrees(max_lat_r),
        min_lon,
        max_lon,
    )
