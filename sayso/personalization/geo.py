from __future__ import annotations

import math

import numpy as np

from .models import BusinessForScoring

EARTH_RADIUS_KM = 6371.0


def is_valid_latitude(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and -90.0 <= value <= 90.0


def is_valid_longitude(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and -180.0 <= value <= 180.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in km."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_km_array(lat: float, lng: float, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """Vectorised :func:`haversine_km` from one origin to many points; NaN stays NaN."""
    lats = np.radians(np.asarray(lats, dtype=float))
    lngs = np.radians(np.asarray(lngs, dtype=float))
    lat_rad = math.radians(lat)
    lng_rad = math.radians(lng)

    a = np.sin((lats - lat_rad) / 2) ** 2 + math.cos(lat_rad) * np.cos(lats) * np.sin((lngs - lng_rad) / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def with_distance(
    business: BusinessForScoring,
    latitude: float | None,
    longitude: float | None,
    business_lat: float | None,
    business_lng: float | None,
) -> BusinessForScoring:
    """Return a copy of *business* with ``distance_km`` set from the user's position.

    The distance is cleared when either coordinate pair is missing or invalid.
    """
    distance_km: float | None = None
    if (
        is_valid_latitude(latitude)
        and is_valid_longitude(longitude)
        and is_valid_latitude(business_lat)
        and is_valid_longitude(business_lng)
    ):
        distance_km = haversine_km(latitude, longitude, business_lat, business_lng)
    return business.model_copy(update={"distance_km": distance_km})
