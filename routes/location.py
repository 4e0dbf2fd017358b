from fastapi import APIRouter, Query

from database import find_or_404
from geo import can_deliver, distance_from_store, estimate_delivery_minutes, haversine_km
from money import round_money

router = APIRouter(prefix="/location", tags=["location"])


@router.get("/distance")
def distance(
    lat1: float = Query(..., ge=-90, le=90),
    lng1: float = Query(..., ge=-180, le=180),
    lat2: float = Query(..., ge=-90, le=90),
    lng2: float = Query(..., ge=-180, le=180),
):
    km = haversine_km(lat1, lng1, lat2, lng2)
    return {"distance_km": round_money(km), "estimated_minutes": estimate_delivery_minutes(km)}


@router.get("/delivery-check")
def delivery_check(
    store_id: str,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    store = find_or_404("store", store_id, "Store", {"is_active": True})
    point = {"lat": lat, "lng": lng}
    km = distance_from_store(store, point)
    return {
        "store_id": store_id,
        "can_deliver": can_deliver(store, point),
        "distance_km": round_money(km) if km is not None else None,
        "delivery_radius": (store.get("delivery_info") or {}).get("delivery_radius", 5),
    }
