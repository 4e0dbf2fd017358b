"""
Distance math for delivery radius checks, fees and time estimates.
"""

from math import asin, cos, radians, sin, sqrt
from typing import Any, Dict, Optional

from config import BASE_DELIVERY_MINUTES, DELIVERY_FEE_PER_KM, MIN_DELIVERY_FEE, MINUTES_PER_KM
from money import round_half_up, round_money

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lng1, lat2, lng2) -> Optional[float]:
    if None in (lat1, lng1, lat2, lng2):
        return None
    dlat = radians(float(lat2) - float(lat1))
    dlng = radians(float(lng2) - float(lng1))
    a = sin(dlat / 2) ** 2 + cos(radians(float(lat1))) * cos(radians(float(lat2))) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, a)))


def distance_from_store(store: Dict[str, Any], point: Dict[str, Any]) -> Optional[float]:
    loc = store.get("location") or {}
    point = point or {}
    return haversine_km(loc.get("lat"), loc.get("lng"), point.get("lat"), point.get("lng"))


def can_deliver(store: Dict[str, Any], point: Dict[str, Any]) -> bool:
    distance = distance_from_store(store, point)
    if distance is None:
        return False
    radius = (store.get("delivery_info") or {}).get("delivery_radius", 5)
    return distance <= radius


def distance_delivery_fee(distance_km: Optional[float], base_fee: Optional[float] = None) -> float:
    """Fee for a drop `distance_km` away; falls back to the store's flat fee when unknown."""
    if distance_km is None:
        return round_money(base_fee if base_fee is not None else MIN_DELIVERY_FEE)
    return round_money(max(MIN_DELIVERY_FEE, distance_km * DELIVERY_FEE_PER_KM))


def estimate_delivery_minutes(distance_km: Optional[float]) -> int:
    return round_half_up(BASE_DELIVERY_MINUTES + (distance_km or 0) * MINUTES_PER_KM)
