"""Shared geospatial utilities."""

from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6_371_000.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two points given in degrees.

    Symmetric and zero for identical points. NaN inputs yield NaN; callers
    exclude issues without usable coordinates before reaching this point.
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push a a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(a, 1.0)))
