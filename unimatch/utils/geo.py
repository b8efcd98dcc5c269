"""Great-circle distance helpers used by candidate discovery."""

import math
from typing import NamedTuple, Optional

# Earth radius in kilometers
EARTH_RADIUS_KM = 6371

# Kilometres per degree of latitude on the same sphere.
KM_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_KM / 360


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    min_lon: Optional[float]
    max_lon: Optional[float]


def is_located(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """Return False for missing coordinates and for the ``(0, 0)`` unset sentinel."""
    if latitude is None or longitude is None:
        return False
    return not (latitude == 0 and longitude == 0)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the great-circle distance between two points
    on the Earth (specified in decimal degrees) using the Haversine formula.

    Args:
        lat1: Latitude of the first point.
        lon1: Longitude of the first point.
        lat2: Latitude of the second point.
        lon2: Longitude of the second point.

    Returns:
        The distance in kilometers.
    """
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # Rounding can push ``a`` a hair past 1 for antipodal points.
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def within_radius(lat1: float, lon1: float, lat2: float, lon2: float, max_distance_km: float) -> bool:
    """Compare the unrounded distance in metres against ``max_distance_km``."""
    distance_m = haversine_distance(lat1, lon1, lat2, lon2) * 1000
    return distance_m <= max_distance_km * 1000


def bounding_box(latitude: float, longitude: float, radius_km: float) -> BoundingBox:
    """Coarse lat/lon box that contains every point within ``radius_km``.

    The longitude bounds are ``None`` when the box would reach a pole or
    wrap across the antimeridian; callers then filter on latitude only and
    rely on the exact haversine check.
    """
    dlat = radius_km / KM_PER_DEGREE
    min_lat = max(-90.0, latitude - dlat)
    max_lat = min(90.0, latitude + dlat)

    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(min_lat, max_lat, None, None)

    # The widest longitude span occurs at the latitude edge nearest a pole.
    widest_lat = max(abs(min_lat), abs(max_lat))
    dlon = radius_km / (KM_PER_DEGREE * math.cos(math.radians(widest_lat)))
    min_lon = longitude - dlon
    max_lon = longitude + dlon

    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, None, None)

    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
