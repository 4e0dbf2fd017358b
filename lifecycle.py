"""
Order status progression.

    pending -> confirmed -> preparing -> ready -> on_way -> delivered
    pending | confirmed -> cancelled
    delivered | cancelled -> refunded
"""

from datetime import datetime
from typing import Any, Dict, Optional

from money import round_half_up, round_places

FLOW = ["pending", "confirmed", "preparing", "ready", "on_way", "delivered"]
CANCELLABLE = ("pending", "confirmed")
REFUNDABLE = ("delivered", "cancelled")

# status -> timing field stamped when the order enters it
TIMESTAMP_FIELDS = {
    "confirmed": "confirmed_at",
    "ready": "prepared_at",
    "on_way": "picked_up_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}

STORE_STEPS = ("confirmed", "preparing", "ready")
DRIVER_STEPS = ("on_way", "delivered")


class InvalidTransition(ValueError):
    pass


def allowed_next(status: str) -> list:
    nxt = []
    if status in FLOW and status != FLOW[-1]:
        nxt.append(FLOW[FLOW.index(status) + 1])
    if status in CANCELLABLE:
        nxt.append("cancelled")
    if status in REFUNDABLE:
        nxt.append("refunded")
    return nxt


def check_transition(current: str, new: str) -> None:
    if new not in allowed_next(current):
        raise InvalidTransition(f"Cannot move order from {current} to {new}")


def can_be_cancelled(order: Dict[str, Any]) -> bool:
    return order.get("status") in CANCELLABLE


def can_be_rated(order: Dict[str, Any]) -> bool:
    return order.get("status") == "delivered" and not (order.get("rating") or {}).get("overall")


def transition_update(order: Dict[str, Any], new: str, at: datetime, by: Optional[str] = None) -> Dict[str, Any]:
    """Build the `$set`/`$push` update for moving `order` to `new`."""
    check_transition(order.get("status"), new)
    sets: Dict[str, Any] = {"status": new, "updated_at": at}
    field = TIMESTAMP_FIELDS.get(new)
    if field:
        sets[f"timing.{field}"] = at
    return {
        "$set": sets,
        "$push": {"status_history": {"status": new, "at": at, "by": by}},
    }


def overall_rating(food: int, delivery: int) -> int:
    return round_half_up((food + delivery) / 2)


def running_average(average: float, count: int, new_value: float) -> Dict[str, float]:
    total = (average or 0) * (count or 0) + new_value
    count = (count or 0) + 1
    return {"average": round_places(total / count, 2), "count": count}


def estimated_total_minutes(order: Dict[str, Any]) -> int:
    timing = order.get("timing") or {}
    return (timing.get("estimated_preparation") or 20) + (timing.get("estimated_delivery") or 25)
