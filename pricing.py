"""
Cart and order pricing.

Everything here works on plain dicts as they come out of Mongo and never
touches the database, so the cart preview and checkout share one formula:

    tax         = subtotal * TAX_RATE
    service_fee = subtotal * SERVICE_FEE_RATE
    total       = max(0, subtotal + tax + delivery_fee + service_fee - discount)

All money is rounded half-up to cents.
"""

import time
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from math import floor
from typing import Any, Dict, Iterable, List, Optional

from config import LOYALTY_POINT_VALUE, SERVICE_FEE_RATE, TAX_RATE
from database import as_utc
from geo import distance_delivery_fee
from money import round_money


class PricingError(ValueError):
    """A cart line or order cannot be priced (bad option, out of stock...)."""


class CouponError(ValueError):
    """A coupon cannot be applied; the message is shown to the user."""


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


# ---------------------- Products ----------------------

def product_final_price(product: Dict[str, Any], now: Optional[datetime] = None) -> float:
    price = float(product.get("price") or 0)
    discount = product.get("discount")
    if not discount or not discount.get("is_active"):
        return price
    now = _now(now)
    start = as_utc(discount.get("start_date"))
    end = as_utc(discount.get("end_date"))
    if start and now < start:
        return price
    if end and now > end:
        return price
    value = float(discount.get("value") or 0)
    if discount.get("type") == "percentage":
        return round_money(price * (1 - value / 100))
    return round_money(max(0.0, price - value))


def is_in_stock(product: Dict[str, Any], quantity: int = 1) -> bool:
    if not product.get("is_available", True):
        return False
    stock = product.get("stock")
    if stock is None:
        return True
    return stock >= quantity


# ---------------------- Cart lines ----------------------

def _resolve_customizations(product: Dict[str, Any], customizations: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    options = {o["name"]: o for o in product.get("options") or []}
    resolved = []
    seen = set()
    for cust in customizations:
        name = cust.get("name")
        option = options.get(name)
        if option is None:
            raise PricingError(f"Unknown option '{name}' for {product.get('name')}")
        if name in seen:
            raise PricingError(f"Option '{name}' given twice")
        seen.add(name)
        chosen = list(cust.get("options") or [])
        if not chosen:
            raise PricingError(f"Pick at least one choice for '{name}'")
        if option.get("type", "single") == "single" and len(chosen) > 1:
            raise PricingError(f"Option '{name}' allows a single choice")
        choices = {c["name"]: c for c in option.get("choices") or []}
        price = 0.0
        for choice_name in chosen:
            choice = choices.get(choice_name)
            if choice is None or not choice.get("is_available", True):
                raise PricingError(f"Choice '{choice_name}' is not available for '{name}'")
            price += float(choice.get("price") or 0)
        resolved.append({"name": name, "options": chosen, "price": round_money(price)})

    missing = [o["name"] for o in options.values() if o.get("required") and o["name"] not in seen]
    if missing:
        raise PricingError(f"Missing required option(s): {', '.join(missing)}")
    return resolved


def _resolve_addons(product: Dict[str, Any], addons: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    catalog = {a["name"]: a for a in product.get("addons") or []}
    resolved = []
    for addon in addons:
        known = catalog.get(addon.get("name"))
        if known is None or not known.get("is_available", True):
            raise PricingError(f"Addon '{addon.get('name')}' is not available")
        quantity = int(addon.get("quantity") or 1)
        if quantity < 1:
            raise PricingError("Addon quantity must be at least 1")
        resolved.append({"name": known["name"], "price": float(known["price"]), "quantity": quantity})
    return resolved


def price_cart_line(
    product: Dict[str, Any],
    quantity: int,
    customizations: Optional[Iterable[Dict[str, Any]]] = None,
    addons: Optional[Iterable[Dict[str, Any]]] = None,
    special_instructions: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Price one line from catalog data; client-sent prices are ignored."""
    if quantity < 1:
        raise PricingError("Quantity must be at least 1")
    if not product.get("is_available", True):
        raise PricingError(f"{product.get('name')} is currently unavailable")

    resolved_custom = _resolve_customizations(product, customizations or [])
    resolved_addons = _resolve_addons(product, addons or [])

    unit = product_final_price(product, now)
    unit += sum(c["price"] for c in resolved_custom)
    unit += sum(a["price"] * a["quantity"] for a in resolved_addons)
    unit = round_money(unit)

    return {
        "id": uuid.uuid4().hex,
        "product_id": str(product.get("_id") or product.get("id")),
        "name": product.get("name"),
        "category": product.get("category"),
        "quantity": quantity,
        "customizations": resolved_custom,
        "addons": resolved_addons,
        "special_instructions": special_instructions,
        "price": unit,
        "total_price": round_money(unit * quantity),
    }


def _line_key(line: Dict[str, Any]):
    custom = tuple(sorted((c["name"], tuple(sorted(c.get("options") or []))) for c in line.get("customizations") or []))
    addons = tuple(sorted((a["name"], a.get("quantity", 1)) for a in line.get("addons") or []))
    return line["product_id"], custom, addons


def add_line(items: List[Dict[str, Any]], line: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Merge `line` into an existing identical line or append it."""
    key = _line_key(line)
    out = [dict(it) for it in items]
    for it in out:
        if _line_key(it) == key:
            it["quantity"] += line["quantity"]
            it["total_price"] = round_money(it["price"] * it["quantity"])
            if line.get("special_instructions"):
                it["special_instructions"] = line["special_instructions"]
            return out
    out.append(line)
    return out


def set_line_quantity(items: List[Dict[str, Any]], item_id: str, quantity: int) -> List[Dict[str, Any]]:
    if quantity < 0:
        raise PricingError("Quantity must be 0 or greater")
    if not any(it["id"] == item_id for it in items):
        raise PricingError("Item not found in cart")
    out = []
    for it in items:
        if it["id"] != item_id:
            out.append(dict(it))
        elif quantity > 0:
            out.append({**it, "quantity": quantity, "total_price": round_money(it["price"] * quantity)})
    return out


def remove_line(items: List[Dict[str, Any]], item_id: str) -> List[Dict[str, Any]]:
    return [dict(it) for it in items if it["id"] != item_id]


def subtotal_of(items: Iterable[Dict[str, Any]]) -> float:
    return round_money(sum(it["total_price"] for it in items))


def quantities_by_product(items: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    totals: Dict[str, int] = defaultdict(int)
    for it in items:
        totals[it["product_id"]] += it["quantity"]
    return dict(totals)


def check_stock(items: List[Dict[str, Any]], products: Dict[str, Dict[str, Any]], store_id: Optional[str] = None) -> None:
    """Every product must still exist, belong to the store and cover the summed quantity."""
    for product_id, quantity in quantities_by_product(items).items():
        product = products.get(product_id)
        if product is None or (store_id and str(product.get("store_id")) != str(store_id)):
            raise PricingError(f"Product {product_id} not available")
        if not is_in_stock(product, quantity):
            raise PricingError(f"Insufficient stock for {product.get('name')}")


# ---------------------- Totals ----------------------

def compute_totals(subtotal: float, delivery_fee: float = 0, discount: float = 0) -> Dict[str, float]:
    subtotal = round_money(subtotal)
    tax = round_money(subtotal * TAX_RATE)
    service_fee = round_money(subtotal * SERVICE_FEE_RATE)
    delivery_fee = round_money(delivery_fee)
    discount = round_money(discount)
    total = round_money(max(0.0, subtotal + tax + delivery_fee + service_fee - discount))
    return {
        "subtotal": subtotal,
        "tax": tax,
        "service_fee": service_fee,
        "delivery_fee": delivery_fee,
        "discount": discount,
        "total": total,
    }


def store_delivery_fee(store: Dict[str, Any], subtotal: float, distance_km: Optional[float] = None) -> float:
    info = store.get("delivery_info") or {}
    threshold = info.get("free_delivery_threshold")
    if threshold is not None and subtotal >= threshold and subtotal > 0:
        return 0.0
    if distance_km is None:
        return round_money(info.get("delivery_fee", 0))
    return distance_delivery_fee(distance_km)


# ---------------------- Coupons ----------------------

def user_usage_count(coupon: Dict[str, Any], user_id: str) -> int:
    return sum(1 for u in coupon.get("used_by") or [] if str(u.get("user_id")) == str(user_id))


def coupon_is_live(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = _now(now)
    start = as_utc(coupon.get("start_date"))
    end = as_utc(coupon.get("end_date"))
    if not coupon.get("is_active", True):
        return False
    if (start and now < start) or (end and now > end):
        return False
    max_usage = coupon.get("max_usage")
    return max_usage is None or coupon.get("usage_count", 0) < max_usage


def check_coupon(
    coupon: Dict[str, Any],
    user_id: str,
    order_amount: float,
    store_id: Optional[str] = None,
    now: Optional[datetime] = None,
    has_previous_orders: bool = False,
) -> None:
    now = _now(now)
    start = as_utc(coupon.get("start_date"))
    end = as_utc(coupon.get("end_date"))
    if not coupon.get("is_active", True) or (start and now < start) or (end and now > end):
        raise CouponError("Coupon expired or inactive")

    max_usage = coupon.get("max_usage")
    if max_usage is not None and coupon.get("usage_count", 0) >= max_usage:
        raise CouponError("Coupon usage limit reached")

    if user_usage_count(coupon, user_id) >= coupon.get("max_usage_per_user", 1):
        raise CouponError("User usage limit reached")

    min_amount = coupon.get("min_order_amount") or 0
    if order_amount < min_amount:
        raise CouponError(f"Minimum order amount is ${min_amount:g}")

    eligible = [str(u) for u in coupon.get("eligible_users") or []]
    if eligible and str(user_id) not in eligible:
        raise CouponError("User not eligible for this coupon")

    stores = [str(s) for s in coupon.get("applicable_stores") or []]
    if store_id and stores and str(store_id) not in stores:
        raise CouponError("Coupon not applicable to this store")

    if coupon.get("new_users_only") and has_previous_orders:
        raise CouponError("Coupon is only valid on your first order")


def discount_base(coupon: Dict[str, Any], items: List[Dict[str, Any]]) -> float:
    """Subtotal the coupon applies to; restricted coupons only count matching lines."""
    products = {str(p) for p in coupon.get("applicable_products") or []}
    categories = {c.lower() for c in coupon.get("applicable_categories") or []}
    if not products and not categories:
        return subtotal_of(items)
    matching = [
        it for it in items
        if it["product_id"] in products or (it.get("category") or "").lower() in categories
    ]
    if not matching:
        raise CouponError("Coupon not applicable to these items")
    return subtotal_of(matching)


def coupon_discount(coupon: Dict[str, Any], order_amount: float, delivery_fee: float = 0) -> float:
    kind = coupon.get("discount_type")
    value = float(coupon.get("discount_value") or 0)
    discount = 0.0
    if kind == "percentage":
        discount = order_amount * value / 100
        cap = coupon.get("max_discount_amount")
        if cap and discount > cap:
            discount = cap
    elif kind == "fixed":
        discount = min(value, order_amount)
    elif kind == "free_delivery":
        discount = delivery_fee
    return round_money(discount)


# ---------------------- Cart recompute ----------------------

def recalculate_cart(
    cart: Dict[str, Any],
    store: Dict[str, Any],
    coupon: Optional[Dict[str, Any]] = None,
    has_previous_orders: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Return a copy of `cart` with fresh totals.

    The applied coupon is re-checked against the new subtotal and dropped
    (with `coupon_dropped` set to the reason) when it no longer applies.
    """
    out = dict(cart)
    items = out.get("items") or []
    subtotal = subtotal_of(items)
    delivery_fee = store_delivery_fee(store, subtotal, out.get("distance_km"))

    discount = 0.0
    out.pop("coupon_dropped", None)
    if out.get("applied_coupon"):
        try:
            if coupon is None or not items:
                raise CouponError("Coupon removed")
            check_coupon(coupon, out["user_id"], subtotal, out.get("store_id"), now, has_previous_orders)
            discount = coupon_discount(coupon, discount_base(coupon, items), delivery_fee)
            out["applied_coupon"] = {
                "code": coupon["code"],
                "coupon_id": str(coupon.get("_id") or coupon.get("id")),
                "discount_amount": discount,
            }
        except CouponError as e:
            out["applied_coupon"] = None
            out["coupon_dropped"] = str(e)
            discount = 0.0

    out.update(compute_totals(subtotal, delivery_fee, discount))
    return out


# ---------------------- Orders ----------------------

def order_items_from_cart(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "product_id": it["product_id"],
            "name": it["name"],
            "category": it.get("category"),
            "price": it["price"],
            "quantity": it["quantity"],
            "customizations": it.get("customizations") or [],
            "addons": it.get("addons") or [],
            "total_price": it["total_price"],
            "special_instructions": it.get("special_instructions"),
        }
        for it in items
    ]


def reprice_lines(items: List[Dict[str, Any]], products: Dict[str, Dict[str, Any]], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Re-run every cart line through the current catalog before checkout."""
    repriced = []
    for it in items:
        product = products.get(it["product_id"])
        if product is None:
            raise PricingError(f"Product {it['product_id']} not available")
        custom = [{"name": c["name"], "options": c.get("options") or []} for c in it.get("customizations") or []]
        line = price_cart_line(product, it["quantity"], custom, it.get("addons") or [], it.get("special_instructions"), now)
        line["id"] = it.get("id", line["id"])
        repriced.append(line)
    return repriced


def price_order(items: List[Dict[str, Any]], delivery_fee: float, discount: float = 0) -> Dict[str, float]:
    if not items:
        raise PricingError("Order must have at least one item")
    totals = compute_totals(subtotal_of(items), delivery_fee, discount)
    return {k: totals[k] for k in ("subtotal", "delivery_fee", "service_fee", "tax", "discount", "total")}


def loyalty_points_for(total: float) -> int:
    return int(floor((total or 0) / LOYALTY_POINT_VALUE))


def make_order_number(sequence: int, now_ms: Optional[int] = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ORD{str(now_ms)[-6:]}{str(sequence).zfill(3)}"
