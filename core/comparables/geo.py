"""
Distance helpers: great-circle distance and the area-hierarchy proxy.
"""

import math
from typing import Optional

from .config import (
    NO_LOCATION_MATCH_KM,
    SAME_CITY_KM,
    SAME_SUBURB_KM,
    SAME_URBANIZATION_KM,
)


# Earth radius in km
EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in km using the Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometres
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b and a.strip().lower() == b.strip().lower())


def hierarchy_distance_km(
    target_urbanization: Optional[str],
    target_suburb: Optional[str],
    target_city: Optional[str],
    urbanization: Optional[str],
    suburb: Optional[str],
    city: Optional[str],
) -> float:
    """
    Proxy distance from the location hierarchy when coordinates are missing.

    Same urbanization ~1 km, same suburb ~5 km, same city ~15 km,
    otherwise ~50 km.
    """
    if _same(target_urbanization, urbanization):
        return SAME_URBANIZATION_KM
    if _same(target_suburb, suburb):
        return SAME_SUBURB_KM
    if _same(target_city, city):
        return SAME_CITY_KM
    return NO_LOCATION_MATCH_KM
