from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import as_utc, db, find_or_404, now_utc, sanitize
from logger import get_logger
from money import round_money
from pricing import CouponError, check_coupon, coupon_discount, coupon_is_live, user_usage_count
from routes.cart import has_prior_orders
from schemas import Coupon as CouponSchema, DiscountType
from security import get_current_user, require_role

logger = get_logger(__name__)

router = APIRouter(prefix="/coupons", tags=["coupons"])


class CreateCouponRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=20)
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    min_order_amount: float = Field(0, ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    max_usage_per_user: int = Field(1, ge=1)
    start_date: datetime
    end_date: datetime
    applicable_stores: List[str] = []
    applicable_categories: List[str] = []
    applicable_products: List[str] = []
    eligible_users: List[str] = []
    new_users_only: bool = False


class UpdateCouponRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    max_usage_per_user: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class ValidateCouponRequest(BaseModel):
    code: str = Field(..., min_length=1)
    order_amount: float = Field(..., ge=0)
    store_id: Optional[str] = None
    delivery_fee: float = Field(0, ge=0)


def _summary(coupon: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(coupon["_id"]),
        "code": coupon["code"],
        "title": coupon.get("title"),
        "description": coupon.get("description"),
        "discount_type": coupon["discount_type"],
        "discount_value": coupon["discount_value"],
        "max_usage": coupon.get("max_usage"),
        "is_active": coupon.get("is_active", True),
    }


def _public_coupon(coupon: Dict[str, Any]) -> Dict[str, Any]:
    c = sanitize(coupon)
    c.pop("used_by", None)
    return c


def assert_coupon_manager(coupon: Dict[str, Any], user: Dict[str, Any]) -> None:
    if user.get("role") != "admin" and coupon.get("created_by") != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized to manage this coupon")


@router.get("")
def available_coupons(store_id: Optional[str] = None, current_user=Depends(get_current_user)):
    user_id = current_user["id"]
    out = []
    for coupon in db["coupon"].find({"is_active": True}).sort("discount_value", -1):
        if not coupon_is_live(coupon):
            continue
        stores = coupon.get("applicable_stores") or []
        if store_id and stores and store_id not in stores:
            continue
        eligible = coupon.get("eligible_users") or []
        if eligible and user_id not in eligible:
            continue
        if user_usage_count(coupon, user_id) >= coupon.get("max_usage_per_user", 1):
            continue
        out.append(_public_coupon(coupon))
        if len(out) == 20:
            break
    return out


@router.post("/validate")
def validate_coupon(payload: ValidateCouponRequest, current_user=Depends(get_current_user)):
    coupon = db["coupon"].find_one({"code": payload.code.strip().upper(), "is_active": True})
    if not coupon:
        raise HTTPException(status_code=404, detail="Invalid coupon code")
    try:
        check_coupon(
            coupon,
            current_user["id"],
            payload.order_amount,
            payload.store_id,
            has_previous_orders=has_prior_orders(current_user["id"]) if coupon.get("new_users_only") else False,
        )
    except CouponError as e:
        raise HTTPException(status_code=400, detail=str(e))
    discount = coupon_discount(coupon, payload.order_amount, payload.delivery_fee)
    return {
        "coupon": _summary(coupon),
        "discount_amount": discount,
        "final_amount": max(0.0, round_money(payload.order_amount - discount)),
    }


@router.post("", status_code=201)
def create_coupon(payload: CreateCouponRequest, current_user=Depends(require_role("admin", "store_owner"))):
    if as_utc(payload.end_date) <= as_utc(payload.start_date):
        raise HTTPException(status_code=400, detail="End date must be after start date")
    data = payload.model_dump()
    data["code"] = payload.code.strip().upper()
    if current_user["role"] == "store_owner":
        # owners can only discount their own stores
        data["applicable_stores"] = [str(s["_id"]) for s in db["store"].find({"owner_id": current_user["id"]}, {"_id": 1})]
        if not data["applicable_stores"]:
            raise HTTPException(status_code=400, detail="Register a store before creating coupons")
    doc = CouponSchema(**data, created_by=current_user["id"]).model_dump()
    doc.update({"created_at": now_utc(), "updated_at": now_utc()})
    try:
        res = db["coupon"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Coupon code already exists")
    doc["_id"] = res.inserted_id
    logger.info("Coupon %s created by %s", doc["code"], current_user["id"])
    return _public_coupon(doc)


@router.get("/manage")
def manage_coupons(current_user=Depends(require_role("admin", "store_owner"))):
    q = {} if current_user["role"] == "admin" else {"created_by": current_user["id"]}
    return [_public_coupon(c) for c in db["coupon"].find(q).sort("created_at", -1)]


@router.put("/{coupon_id}")
def update_coupon(coupon_id: str, payload: UpdateCouponRequest, current_user=Depends(get_current_user)):
    coupon = find_or_404("coupon", coupon_id, "Coupon")
    assert_coupon_manager(coupon, current_user)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    start = as_utc(updates.get("start_date") or coupon["start_date"])
    end = as_utc(updates.get("end_date") or coupon["end_date"])
    if end <= start:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    updates["updated_at"] = now_utc()
    db["coupon"].update_one({"_id": coupon["_id"]}, {"$set": updates})
    return _public_coupon(db["coupon"].find_one({"_id": coupon["_id"]}))


@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: str, current_user=Depends(get_current_user)):
    coupon = find_or_404("coupon", coupon_id, "Coupon")
    assert_coupon_manager(coupon, current_user)
    db["coupon"].delete_one({"_id": coupon["_id"]})
    return {"message": "Coupon deleted successfully"}


@router.get("/{coupon_id}/stats")
def coupon_stats(coupon_id: str, current_user=Depends(get_current_user)):
    coupon = find_or_404("coupon", coupon_id, "Coupon")
    assert_coupon_manager(coupon, current_user)
    used_by = coupon.get("used_by") or []
    by_date = Counter(as_utc(u["used_at"]).date().isoformat() for u in used_by)
    return {
        "coupon": _summary(coupon),
        "statistics": {
            "total_usage": coupon.get("usage_count", 0),
            "total_discount_given": round_money(sum(u.get("discount_applied", 0) for u in used_by)),
            "unique_users": len({u["user_id"] for u in used_by}),
            "usage_by_date": dict(by_date),
            "recent_usage": sanitize({"r": list(reversed(used_by[-10:]))})["r"],
        },
    }
