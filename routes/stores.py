import re
from datetime import datetime
from math import ceil
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field

from database import db, find_or_404, now_utc, sanitize, to_obj_id
from geo import can_deliver, distance_from_store, estimate_delivery_minutes
from logger import get_logger
from money import round_places
from pricing import store_delivery_fee
from schemas import (
    Coordinates,
    DeliveryInfo,
    OperatingHours,
    PaymentMethod,
    Store as StoreSchema,
    StoreAddress,
    StoreSettings,
)
from security import get_current_user, require_role

logger = get_logger(__name__)

router = APIRouter(prefix="/stores", tags=["stores"])

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class CreateStoreRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[str] = None
    logo: Optional[str] = None
    banner: Optional[str] = None
    address: StoreAddress
    location: Coordinates
    phone: str = Field(..., min_length=6, max_length=20)
    email: Optional[EmailStr] = None
    operating_hours: List[OperatingHours] = []
    delivery_info: DeliveryInfo = DeliveryInfo()
    tags: List[str] = []
    payment_methods: List[PaymentMethod] = ["cash", "card"]
    settings: StoreSettings = StoreSettings()
    owner_id: Optional[str] = Field(None, description="Only used when an admin creates a store for an owner")


class UpdateStoreRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[str] = None
    logo: Optional[str] = None
    banner: Optional[str] = None
    address: Optional[StoreAddress] = None
    location: Optional[Coordinates] = None
    phone: Optional[str] = Field(None, min_length=6, max_length=20)
    email: Optional[EmailStr] = None
    operating_hours: Optional[List[OperatingHours]] = None
    delivery_info: Optional[DeliveryInfo] = None
    tags: Optional[List[str]] = None
    payment_methods: Optional[List[PaymentMethod]] = None
    settings: Optional[StoreSettings] = None
    is_featured: Optional[bool] = None


def is_open(store: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Open when today's hours include the current HH:MM. Stores without hours count as open."""
    hours = store.get("operating_hours") or []
    if not hours:
        return True
    now = now or datetime.now()
    today = WEEKDAYS[now.weekday()]
    current = now.strftime("%H:%M")
    for h in hours:
        if h.get("day") == today:
            return bool(h.get("is_open")) and h.get("open_time", "00:00") <= current <= h.get("close_time", "23:59")
    return False


def assert_store_manager(store: Dict[str, Any], user: Dict[str, Any]) -> None:
    if user.get("role") != "admin" and str(store.get("owner_id")) != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized to manage this store")


def _public_store(store: Dict[str, Any]) -> Dict[str, Any]:
    s = sanitize(store)
    s["is_open"] = is_open(store)
    return s


@router.get("")
def list_stores(
    category: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, ge=0.1, le=50),
    sort_by: Literal["distance", "rating", "delivery_time", "delivery_fee"] = "rating",
    is_open_now: Optional[bool] = Query(None, alias="is_open"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
):
    q: Dict[str, Any] = {"is_active": True}
    if category:
        q["category_id"] = category
    if search:
        pattern = re.escape(search)
        q["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    stores = []
    point = {"lat": lat, "lng": lng} if lat is not None and lng is not None else None
    for s in db["store"].find(q):
        if point:
            distance = distance_from_store(s, point)
            if distance is None or distance > radius:
                continue
            s["distance"] = round_places(distance, 2)
        if is_open_now is not None and is_open(s) != is_open_now:
            continue
        stores.append(s)

    if sort_by == "distance" and point:
        stores.sort(key=lambda s: s["distance"])
    elif sort_by == "delivery_time":
        stores.sort(key=lambda s: s.get("delivery_info", {}).get("estimated_delivery_time", {}).get("min", 0))
    elif sort_by == "delivery_fee":
        stores.sort(key=lambda s: s.get("delivery_info", {}).get("delivery_fee", 0))
    else:
        stores.sort(key=lambda s: s.get("rating", {}).get("average", 0), reverse=True)

    total = len(stores)
    total_pages = ceil(total / limit) if total else 0
    page_items = stores[(page - 1) * limit: page * limit]
    return {
        "stores": [_public_store(s) for s in page_items],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_stores": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.get("/featured/list")
def featured_stores(limit: int = Query(10, ge=1, le=50)):
    cursor = db["store"].find({"is_active": True, "is_featured": True}).sort("rating.average", -1).limit(limit)
    return [_public_store(s) for s in cursor]


@router.get("/mine")
def my_stores(current_user=Depends(require_role("store_owner", "admin"))):
    return [_public_store(s) for s in db["store"].find({"owner_id": current_user["id"]})]


@router.get("/{store_id}")
def get_store(store_id: str):
    store = find_or_404("store", store_id, "Store", {"is_active": True})
    products = db["product"].find({"store_id": store_id, "is_available": True}).sort([("category", 1), ("name", 1)])
    return {"store": _public_store(store), "products": [sanitize(p) for p in products]}


@router.get("/{store_id}/delivery-quote")
def delivery_quote(
    store_id: str,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    subtotal: float = Query(0, ge=0),
):
    store = find_or_404("store", store_id, "Store", {"is_active": True})
    point = {"lat": lat, "lng": lng}
    distance = distance_from_store(store, point)
    info = store.get("delivery_info") or {}
    preparation = (store.get("settings") or {}).get("preparation_time", 15)
    return {
        "store_id": store_id,
        "distance_km": round_places(distance, 2),
        "can_deliver": can_deliver(store, point),
        "delivery_radius": info.get("delivery_radius"),
        "minimum_order": info.get("minimum_order", 0),
        "delivery_fee": store_delivery_fee(store, subtotal, distance),
        "estimated_minutes": preparation + estimate_delivery_minutes(distance),
        "is_open": is_open(store),
    }


@router.post("", status_code=201)
def create_store(payload: CreateStoreRequest, current_user=Depends(require_role("store_owner", "admin"))):
    owner_id = current_user["id"]
    if current_user["role"] == "admin" and payload.owner_id:
        owner = db["user"].find_one({"_id": to_obj_id(payload.owner_id)})
        if not owner or owner.get("role") != "store_owner":
            raise HTTPException(status_code=400, detail="owner_id must be a valid store owner")
        owner_id = payload.owner_id
    if current_user["role"] == "store_owner" and db["store"].find_one({"owner_id": owner_id}):
        raise HTTPException(status_code=400, detail="You already have a store registered")
    if payload.category_id and not db["category"].find_one({"_id": to_obj_id(payload.category_id)}):
        raise HTTPException(status_code=400, detail="Invalid category")

    store_doc = StoreSchema(owner_id=owner_id, **payload.model_dump(exclude={"owner_id"})).model_dump()
    store_doc.update({"created_at": now_utc(), "updated_at": now_utc()})
    res = db["store"].insert_one(store_doc)
    store_doc["_id"] = res.inserted_id
    logger.info("Store %s created by %s", res.inserted_id, current_user["id"])
    return _public_store(store_doc)


@router.put("/{store_id}")
def update_store(store_id: str, payload: UpdateStoreRequest, current_user=Depends(get_current_user)):
    store = find_or_404("store", store_id, "Store")
    assert_store_manager(store, current_user)
    updates = payload.model_dump(exclude_none=True)
    if "is_featured" in updates and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Only admins can feature stores")
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    updates["updated_at"] = now_utc()
    db["store"].update_one({"_id": store["_id"]}, {"$set": updates})
    return _public_store(db["store"].find_one({"_id": store["_id"]}))


@router.delete("/{store_id}")
def delete_store(store_id: str, current_user=Depends(get_current_user)):
    store = find_or_404("store", store_id, "Store")
    assert_store_manager(store, current_user)
    # soft delete keeps order history intact
    db["store"].update_one({"_id": store["_id"]}, {"$set": {"is_active": False, "updated_at": now_utc()}})
    logger.info("Store %s deactivated by %s", store_id, current_user["id"])
    return {"message": "Store deleted successfully"}
