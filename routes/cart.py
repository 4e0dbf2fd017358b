from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from config import CART_TTL_HOURS
from database import db, find_or_404, now_utc, sanitize, to_obj_id
from geo import can_deliver, distance_from_store
from logger import get_logger
from money import round_places
from pricing import (
    CouponError,
    PricingError,
    add_line,
    check_coupon,
    coupon_discount,
    discount_base,
    is_in_stock,
    price_cart_line,
    quantities_by_product,
    recalculate_cart,
    remove_line,
    set_line_quantity,
    subtotal_of,
    store_delivery_fee,
)
from schemas import Address, Cart as CartSchema
from security import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


class CustomizationRequest(BaseModel):
    name: str
    options: List[str] = []


class AddonRequest(BaseModel):
    name: str
    quantity: int = Field(1, ge=1)


class AddItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    customizations: List[CustomizationRequest] = []
    addons: List[AddonRequest] = []
    special_instructions: Optional[str] = Field(None, max_length=200)


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=0)


class ApplyCouponRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1)


class DeliveryAddressRequest(BaseModel):
    address: Address


def has_prior_orders(user_id: str) -> bool:
    return db["order"].count_documents({"customer_id": user_id, "status": {"$ne": "cancelled"}}) > 0


def load_products(ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    oids = [to_obj_id(i) for i in set(ids)]
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}


def active_store(store_id: str) -> Dict[str, Any]:
    return find_or_404("store", store_id, "Store", {"is_active": True})


def get_or_create_cart(user_id: str, store: Dict[str, Any]) -> Dict[str, Any]:
    store_id = str(store["_id"])
    cart = db["cart"].find_one({"user_id": user_id, "store_id": store_id, "is_active": True})
    if cart:
        return cart
    doc = CartSchema(
        user_id=user_id,
        store_id=store_id,
        delivery_fee=store_delivery_fee(store, 0),
        expires_at=now_utc() + timedelta(hours=CART_TTL_HOURS),
    ).model_dump()
    doc.update({"created_at": now_utc(), "updated_at": now_utc()})
    res = db["cart"].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def find_cart(user_id: str, store_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id, "store_id": store_id, "is_active": True})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart


def applied_coupon_doc(cart: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    applied = cart.get("applied_coupon")
    if not applied:
        return None
    return db["coupon"].find_one({"_id": to_obj_id(applied["coupon_id"])})


def save_cart(cart: Dict[str, Any], store: Dict[str, Any]) -> Dict[str, Any]:
    """Recompute totals, push the expiry forward and persist."""
    coupon = applied_coupon_doc(cart)
    prior = has_prior_orders(cart["user_id"]) if coupon and coupon.get("new_users_only") else False
    cart = recalculate_cart(cart, store, coupon, prior)
    dropped = cart.pop("coupon_dropped", None)
    if dropped:
        logger.info("Coupon dropped from cart %s: %s", cart["_id"], dropped)
    cart["expires_at"] = now_utc() + timedelta(hours=CART_TTL_HOURS)
    cart["updated_at"] = now_utc()
    db["cart"].replace_one({"_id": cart["_id"]}, cart)
    out = sanitize(cart)
    if dropped:
        out["coupon_dropped"] = dropped
    return out


@router.get("/{store_id}")
def get_cart(store_id: str, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    return save_cart(get_or_create_cart(current_user["id"], store), store)


@router.post("/{store_id}/items")
def add_item(store_id: str, payload: AddItemRequest, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    product = db["product"].find_one({"_id": to_obj_id(payload.product_id), "store_id": store_id})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found in this store")
    try:
        line = price_cart_line(
            product,
            payload.quantity,
            [c.model_dump() for c in payload.customizations],
            [a.model_dump() for a in payload.addons],
            payload.special_instructions,
        )
    except PricingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    cart = get_or_create_cart(current_user["id"], store)
    items = add_line(cart.get("items") or [], line)
    wanted = quantities_by_product(items)[line["product_id"]]
    if not is_in_stock(product, wanted):
        raise HTTPException(status_code=400, detail=f"Insufficient stock for {product.get('name')}")
    cart["items"] = items
    return save_cart(cart, store)


@router.put("/{store_id}/items/{item_id}")
def update_item(store_id: str, item_id: str, payload: UpdateQuantityRequest, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    try:
        items = set_line_quantity(cart.get("items") or [], item_id, payload.quantity)
    except PricingError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if payload.quantity > 0:
        line = next(it for it in items if it["id"] == item_id)
        product = db["product"].find_one({"_id": to_obj_id(line["product_id"])})
        if not product or not is_in_stock(product, quantities_by_product(items)[line["product_id"]]):
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {line['name']}")
    cart["items"] = items
    return save_cart(cart, store)


@router.delete("/{store_id}/items/{item_id}")
def delete_item(store_id: str, item_id: str, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    if not any(it["id"] == item_id for it in cart.get("items") or []):
        raise HTTPException(status_code=404, detail="Item not found in cart")
    cart["items"] = remove_line(cart["items"], item_id)
    return save_cart(cart, store)


@router.post("/{store_id}/coupon")
def apply_coupon(store_id: str, payload: ApplyCouponRequest, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    items = cart.get("items") or []
    if not items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    coupon = db["coupon"].find_one({"code": payload.coupon_code.strip().upper(), "is_active": True})
    if not coupon:
        raise HTTPException(status_code=404, detail="Invalid coupon code")

    subtotal = subtotal_of(items)
    try:
        check_coupon(
            coupon,
            current_user["id"],
            subtotal,
            store_id,
            has_previous_orders=has_prior_orders(current_user["id"]) if coupon.get("new_users_only") else False,
        )
        amount = coupon_discount(coupon, discount_base(coupon, items), store_delivery_fee(store, subtotal, cart.get("distance_km")))
    except CouponError as e:
        raise HTTPException(status_code=400, detail=str(e))

    cart["applied_coupon"] = {"code": coupon["code"], "coupon_id": str(coupon["_id"]), "discount_amount": amount}
    logger.info("Coupon %s applied to cart %s", coupon["code"], cart["_id"])
    return save_cart(cart, store)


@router.delete("/{store_id}/coupon")
def remove_coupon(store_id: str, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    cart["applied_coupon"] = None
    return save_cart(cart, store)


@router.delete("/{store_id}")
def clear_cart(store_id: str, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    cart["items"] = []
    cart["applied_coupon"] = None
    return save_cart(cart, store)


@router.put("/{store_id}/delivery-address")
def set_delivery_address(store_id: str, payload: DeliveryAddressRequest, current_user=Depends(get_current_user)):
    store = active_store(store_id)
    cart = find_cart(current_user["id"], store_id)
    point = payload.address.coordinates.model_dump()
    if not can_deliver(store, point):
        raise HTTPException(status_code=400, detail="Store does not deliver to this location")
    cart["delivery_address"] = payload.address.model_dump()
    cart["distance_km"] = round_places(distance_from_store(store, point), 2)
    return save_cart(cart, store)
