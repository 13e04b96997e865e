"""Distance helpers."""

from __future__ import annotations

import math

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE = 111_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two lat/lon points (degrees)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def flat_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Rough planar distance: coordinate delta scaled by 111 km/degree.

    A degree of longitude is taken as 111 km everywhere, so east-west gaps
    are over-reported away from the equator. Only for short ranges.
    """
    return math.hypot(lat1 - lat2, lon1 - lon2) * METERS_PER_DEGREE
