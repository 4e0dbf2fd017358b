from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import db, find_or_404, now_utc, sanitize, to_obj_id
from geo import can_deliver, distance_from_store, estimate_delivery_minutes
from lifecycle import (
    DRIVER_STEPS,
    STORE_STEPS,
    InvalidTransition,
    can_be_cancelled,
    can_be_rated,
    estimated_total_minutes,
    overall_rating,
    running_average,
    transition_update,
)
from logger import get_logger
from money import round_money
from pricing import (
    CouponError,
    PricingError,
    check_coupon,
    check_stock,
    coupon_discount,
    discount_base,
    loyalty_points_for,
    make_order_number,
    order_items_from_cart,
    price_order,
    quantities_by_product,
    reprice_lines,
    store_delivery_fee,
)
from routes.cart import find_cart, has_prior_orders, load_products
from schemas import Address, ContactInfo, Order as OrderSchema, OrderStatus, PaymentMethod
from security import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderRequest(BaseModel):
    store_id: str
    delivery_address: Optional[Address] = None
    contact_info: ContactInfo
    payment_method: PaymentMethod
    special_instructions: Optional[str] = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class RateOrderRequest(BaseModel):
    food: int = Field(..., ge=1, le=5)
    delivery: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


def _public_order(order: Dict[str, Any]) -> Dict[str, Any]:
    o = sanitize(order)
    o["estimated_total_minutes"] = estimated_total_minutes(order)
    o["can_be_cancelled"] = can_be_cancelled(order)
    return o


def _store_of(order: Dict[str, Any]) -> Dict[str, Any]:
    return db["store"].find_one({"_id": to_obj_id(order["store_id"])}) or {}


def _is_store_owner(order: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return user.get("role") == "store_owner" and str(_store_of(order).get("owner_id")) == user["id"]


def can_view(order: Dict[str, Any], user: Dict[str, Any]) -> bool:
    if user.get("role") == "admin" or order["customer_id"] == user["id"]:
        return True
    if user.get("role") == "delivery_driver" and order.get("driver_id") == user["id"]:
        return True
    return _is_store_owner(order, user)


@router.post("", status_code=201)
def create_order(payload: CreateOrderRequest, current_user=Depends(get_current_user)):
    user_id = current_user["id"]
    store = find_or_404("store", payload.store_id, "Store", {"is_active": True})
    settings = store.get("settings") or {}
    if not settings.get("accept_orders", True):
        raise HTTPException(status_code=400, detail="Store is not accepting orders")
    if payload.payment_method not in (store.get("payment_methods") or ["cash", "card"]):
        raise HTTPException(status_code=400, detail="Payment method not accepted by this store")

    cart = find_cart(user_id, payload.store_id)
    if not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")

    address = payload.delivery_address.model_dump() if payload.delivery_address else cart.get("delivery_address")
    if not address:
        raise HTTPException(status_code=400, detail="Delivery address is required")
    point = address.get("coordinates") or {}
    if not can_deliver(store, point):
        raise HTTPException(status_code=400, detail="Store does not deliver to this location")
    distance = round_money(distance_from_store(store, point))

    now = now_utc()
    products = load_products(it["product_id"] for it in cart["items"])
    try:
        lines = reprice_lines(cart["items"], products, now)
        check_stock(lines, products, payload.store_id)
        items = order_items_from_cart(lines)
    except PricingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    subtotal = round_money(sum(it["total_price"] for it in items))
    minimum = (store.get("delivery_info") or {}).get("minimum_order", 0)
    if subtotal < minimum:
        raise HTTPException(status_code=400, detail=f"Minimum order amount is ${minimum:g}")

    delivery_fee = store_delivery_fee(store, subtotal, distance)
    discount = 0.0
    coupon = None
    applied = cart.get("applied_coupon")
    if applied:
        coupon = db["coupon"].find_one({"_id": to_obj_id(applied["coupon_id"])})
        try:
            if not coupon:
                raise CouponError("Coupon no longer exists")
            check_coupon(
                coupon,
                user_id,
                subtotal,
                payload.store_id,
                now,
                has_previous_orders=has_prior_orders(user_id) if coupon.get("new_users_only") else False,
            )
            discount = coupon_discount(coupon, discount_base(coupon, lines), delivery_fee)
        except CouponError as e:
            raise HTTPException(status_code=400, detail=str(e))

    pricing = price_order(items, delivery_fee, discount)
    paid = payload.payment_method != "cash"
    order_doc = OrderSchema(
        order_number=make_order_number(db["order"].count_documents({}) + 1),
        customer_id=user_id,
        store_id=payload.store_id,
        items=items,
        status_history=[{"status": "pending", "at": now, "by": user_id}],
        delivery_address=address,
        contact_info=payload.contact_info,
        payment_info={"method": payload.payment_method, "status": "paid" if paid else "pending", "paid_at": now if paid else None},
        pricing=pricing,
        coupon={"code": coupon["code"], "type": coupon["discount_type"], "discount": discount} if coupon else None,
        timing={
            "estimated_preparation": settings.get("preparation_time", 15),
            "estimated_delivery": estimate_delivery_minutes(distance),
            "distance_km": distance,
        },
        special_instructions=payload.special_instructions,
    ).model_dump()
    order_doc.update({"created_at": now, "updated_at": now})
    res = db["order"].insert_one(order_doc)
    order_doc["_id"] = res.inserted_id
    order_id = str(res.inserted_id)

    for product_id, quantity in quantities_by_product(items).items():
        product = products[product_id]
        inc = {"total_orders": quantity}
        if product.get("stock") is not None:
            inc["stock"] = -quantity
        db["product"].update_one({"_id": product["_id"]}, {"$inc": inc})
        if product.get("stock") is not None and product["stock"] - quantity <= 0:
            db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_available": False}})

    db["store"].update_one({"_id": store["_id"]}, {"$inc": {"total_orders": 1, "total_revenue": pricing["total"]}})

    if coupon:
        db["coupon"].update_one(
            {"_id": coupon["_id"]},
            {
                "$inc": {"usage_count": 1},
                "$push": {"used_by": {"user_id": user_id, "order_id": order_id, "used_at": now, "discount_applied": discount}},
            },
        )

    db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$set": {
            "items": [],
            "applied_coupon": None,
            "subtotal": 0, "tax": 0, "service_fee": 0, "discount": 0,
            "total": 0,
            "updated_at": now,
        }},
    )
    logger.info("Order %s placed by %s at store %s for %.2f", order_doc["order_number"], user_id, payload.store_id, pricing["total"])
    return _public_order(order_doc)


@router.get("")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user=Depends(get_current_user),
):
    role = current_user.get("role")
    q: Dict[str, Any] = {}
    if role == "store_owner":
        q["store_id"] = {"$in": [str(s["_id"]) for s in db["store"].find({"owner_id": current_user["id"]}, {"_id": 1})]}
    elif role == "delivery_driver":
        q["driver_id"] = current_user["id"]
    elif role != "admin":
        q["customer_id"] = current_user["id"]
    if status:
        q["status"] = status
    total = db["order"].count_documents(q)
    cursor = db["order"].find(q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {"orders": [_public_order(o) for o in cursor], "total": total, "page": page}


@router.get("/{order_id}")
def get_order(order_id: str, current_user=Depends(get_current_user)):
    order = find_or_404("order", order_id, "Order")
    if not can_view(order, current_user):
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    return _public_order(order)


@router.put("/{order_id}/status")
def update_status(order_id: str, payload: StatusUpdateRequest, current_user=Depends(get_current_user)):
    order = find_or_404("order", order_id, "Order")
    new = payload.status
    role = current_user.get("role")
    is_admin = role == "admin"
    is_owner = _is_store_owner(order, current_user)

    if new == "cancelled":
        raise HTTPException(status_code=400, detail="Use the cancel endpoint to cancel orders")
    if new == "refunded":
        allowed = is_admin
    elif new in STORE_STEPS:
        allowed = is_admin or is_owner
    elif new in DRIVER_STEPS:
        is_driver = role == "delivery_driver" and order.get("driver_id") in (None, current_user["id"])
        allowed = is_admin or is_owner or is_driver
    else:
        allowed = False
    if not allowed:
        raise HTTPException(status_code=403, detail="Not authorized to set this status")

    now = now_utc()
    try:
        update = transition_update(order, new, now, current_user["id"])
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))

    if new == "on_way" and role == "delivery_driver":
        update["$set"]["driver_id"] = current_user["id"]
    if new == "delivered":
        points = loyalty_points_for(order["pricing"]["total"])
        update["$set"]["loyalty_points_earned"] = points
        if (order.get("payment_info") or {}).get("method") == "cash":
            update["$set"]["payment_info.status"] = "paid"
            update["$set"]["payment_info.paid_at"] = now
        db["user"].update_one({"_id": to_obj_id(order["customer_id"])}, {"$inc": {"loyalty_points": points}})
    if new == "refunded" and order["status"] == "delivered":
        # refunds after a cancel only change the status, cancel settled the rest
        if (order.get("payment_info") or {}).get("status") == "paid":
            update["$set"]["payment_info.status"] = "refunded"
            update["$set"]["refund_amount"] = order["pricing"]["total"]
        if order.get("loyalty_points_earned"):
            db["user"].update_one(
                {"_id": to_obj_id(order["customer_id"])},
                {"$inc": {"loyalty_points": -order["loyalty_points_earned"]}},
            )
        db["store"].update_one(
            {"_id": to_obj_id(order["store_id"])},
            {"$inc": {"total_orders": -1, "total_revenue": -order["pricing"]["total"]}},
        )

    db["order"].update_one({"_id": order["_id"]}, update)
    logger.info("Order %s moved %s -> %s by %s", order["order_number"], order["status"], new, current_user["id"])
    return _public_order(db["order"].find_one({"_id": order["_id"]}))


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, payload: CancelOrderRequest, current_user=Depends(get_current_user)):
    order = find_or_404("order", order_id, "Order")
    if order["customer_id"] != current_user["id"] and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not authorized to cancel this order")
    if not can_be_cancelled(order):
        raise HTTPException(status_code=400, detail="Order cannot be cancelled at this stage")

    now = now_utc()
    update = transition_update(order, "cancelled", now, current_user["id"])
    update["$set"]["cancellation_reason"] = payload.reason or "Cancelled by customer"
    if (order.get("payment_info") or {}).get("status") == "paid":
        update["$set"]["payment_info.status"] = "refunded"
        update["$set"]["refund_amount"] = order["pricing"]["total"]
    db["order"].update_one({"_id": order["_id"]}, update)

    # give the stock back
    for product_id, quantity in quantities_by_product(order["items"]).items():
        product = db["product"].find_one({"_id": to_obj_id(product_id)})
        if not product:
            continue
        update: Dict[str, Any] = {"$inc": {"total_orders": -quantity}}
        if product.get("stock") is not None:
            update["$inc"]["stock"] = quantity
            if product["stock"] <= 0:
                update["$set"] = {"is_available": True}
        db["product"].update_one({"_id": product["_id"]}, update)

    db["store"].update_one(
        {"_id": to_obj_id(order["store_id"])},
        {"$inc": {"total_orders": -1, "total_revenue": -order["pricing"]["total"]}},
    )

    if order.get("coupon"):
        db["coupon"].update_one(
            {"code": order["coupon"]["code"]},
            {"$inc": {"usage_count": -1}, "$pull": {"used_by": {"order_id": str(order["_id"])}}},
        )

    logger.info("Order %s cancelled by %s", order["order_number"], current_user["id"])
    return _public_order(db["order"].find_one({"_id": order["_id"]}))


@router.post("/{order_id}/rate")
def rate_order(order_id: str, payload: RateOrderRequest, current_user=Depends(get_current_user)):
    order = find_or_404("order", order_id, "Order")
    if order["customer_id"] != current_user["id"]:
        raise HTTPException(status_code=403, detail="Only the customer can rate this order")
    if not can_be_rated(order):
        raise HTTPException(status_code=400, detail="Order cannot be rated")

    overall = overall_rating(payload.food, payload.delivery)
    rating = {
        "food": payload.food,
        "delivery": payload.delivery,
        "overall": overall,
        "comment": payload.comment,
        "rated_at": now_utc(),
    }
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"rating": rating, "updated_at": now_utc()}})

    store = _store_of(order)
    if store:
        current = store.get("rating") or {}
        db["store"].update_one(
            {"_id": store["_id"]},
            {"$set": {"rating": running_average(current.get("average", 0), current.get("count", 0), overall)}},
        )
    return _public_order(db["order"].find_one({"_id": order["_id"]}))
