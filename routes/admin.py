import re
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from database import create_document, db, find_or_404, now_utc, sanitize
from logger import get_logger
from money import round_money
from schemas import Role, User as UserSchema
from security import hash_password, require_role

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class UserStatusRequest(BaseModel):
    is_active: bool


@router.get("/dashboard")
def admin_dashboard(admin=Depends(require_role("admin"))):
    revenue = list(db["order"].aggregate([
        {"$match": {"status": "delivered"}},
        {"$group": {"_id": None, "total": {"$sum": "$pricing.total"}}},
    ]))
    by_status = {s["_id"]: s["count"] for s in db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])}
    return {
        "total_users": db["user"].count_documents({}),
        "total_stores": db["store"].count_documents({"is_active": True}),
        "total_orders": db["order"].count_documents({}),
        "total_revenue": round_money(revenue[0]["total"]) if revenue else 0,
        "orders_by_status": by_status,
    }


@router.get("/users")
def admin_list_users(
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    sort_by: Literal["name", "email", "role", "created_at"] = "name",
    order: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin=Depends(require_role("admin")),
):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = {"$regex": re.escape(name), "$options": "i"}
    if email:
        q["email"] = {"$regex": re.escape(email), "$options": "i"}
    if role:
        q["role"] = role
    if is_active is not None:
        q["is_active"] = is_active
    sort_dir = 1 if order == "asc" else -1
    cursor = db["user"].find(q).sort([(sort_by, sort_dir)]).skip((page - 1) * limit).limit(limit)
    return [sanitize(u) for u in cursor]


@router.put("/users/{user_id}/status")
def set_user_status(user_id: str, payload: UserStatusRequest, admin=Depends(require_role("admin"))):
    user = find_or_404("user", user_id, "User")
    if str(user["_id"]) == admin["id"] and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate yourself")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_active": payload.is_active, "updated_at": now_utc()}})
    logger.info("User %s %s by admin %s", user_id, "activated" if payload.is_active else "deactivated", admin["id"])
    return sanitize(db["user"].find_one({"_id": user["_id"]}))


# Bootstrap route for demo
@router.post("/bootstrap")
def bootstrap_admin():
    """Create a default admin if none exists (email: admin@example.com, password: Admin@123)."""
    if db["user"].count_documents({"role": "admin"}) > 0:
        raise HTTPException(status_code=400, detail="Admin already exists")
    create_document(
        "user",
        UserSchema(name="Administrator", email="admin@example.com", password_hash=hash_password("Admin@123"), role="admin"),
    )
    logger.warning("Bootstrap admin created")
    return {"message": "Admin created", "email": "admin@example.com", "password": "Admin@123"}
