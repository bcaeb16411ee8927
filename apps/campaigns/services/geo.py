"""
Great-circle distance between [longitude, latitude] pairs.

Locations are sequences of two floats in degrees, longitude first.
"""

import math
from numbers import Real
from typing import Sequence

from django.conf import settings


EARTH_RADIUS_KM = 6371.0


def exclusion_radius_km() -> float:
    return float(getattr(settings, 'CAMPAIGN_EXCLUSION_RADIUS_KM', 2))


def is_valid_location(location) -> bool:
    """Return True for a two-element sequence of finite numbers."""
    if isinstance(location, (str, bytes)) or not isinstance(location, Sequence):
        return False
    if len(location) != 2:
        return False
    for value in location:
        if isinstance(value, bool) or not isinstance(value, Real):
            return False
        if not math.isfinite(value):
            return False
    return True


def distance_km(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Haversine distance in kilometres.

    Out-of-range coordinates are not rejected; the intermediate term is
    clamped so the result is always a finite, non-negative number.

    Args:
        a: [longitude, latitude] in degrees
        b: [longitude, latitude] in degrees

    Returns:
        Distance in km, symmetric in its arguments and 0 for equal points
    """
    lon1, lat1 = a
    lon2, lat2 = b

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    h = min(1.0, max(0.0, h))

    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_radius(a: Sequence[float], b: Sequence[float], radius_km: float = None) -> bool:
    if radius_km is None:
        radius_km = exclusion_radius_km()
    return distance_km(a, b) <= radius_km
