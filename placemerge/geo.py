"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Dict

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = 111000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_m(lat1, lon1, lat2, lon2) / 1000.0


def bounding_box(lat: float, lon: float, radius_m: float) -> Dict[str, float]:
    """Compute a rough bounding box around a center point.

    Used as a cheap prefilter before exact haversine filtering, so it errs on
    the side of being slightly too large. Longitudes are wrapped into
    [-180, 180]; a box crossing the antimeridian has lon_min > lon_max.
    """
    delta_lat = radius_m / METERS_PER_DEGREE
    delta_lon = radius_m / (METERS_PER_DEGREE * max(0.01, math.cos(math.radians(lat))))
    if delta_lon >= 180.0:
        lon_min, lon_max = -180.0, 180.0
    else:
        lon_min, lon_max = wrap_longitude(lon - delta_lon), wrap_longitude(lon + delta_lon)
    return {
        "lat_min": lat - delta_lat,
        "lat_max": lat + delta_lat,
        "lon_min": lon_min,
        "lon_max": lon_max,
    }


def wrap_longitude(lon: float) -> float:
    if lon < -180.0:
        return lon + 360.0
    if lon > 180.0:
        return lon - 360.0
    return lon
