from math import ceil
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from config import REVIEW_REPORT_THRESHOLD
from database import db, find_or_404, get_documents, now_utc, sanitize, to_obj_id
from logger import get_logger
from money import round_places
from routes.stores import assert_store_manager
from schemas import Review as ReviewSchema
from security import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

SUB_RATINGS = ("food_quality", "delivery_time", "customer_service")


class CreateReviewRequest(BaseModel):
    order_id: str
    store_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    food_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_time: Optional[int] = Field(None, ge=1, le=5)
    customer_service: Optional[int] = Field(None, ge=1, le=5)


class UpdateReviewRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    food_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_time: Optional[int] = Field(None, ge=1, le=5)
    customer_service: Optional[int] = Field(None, ge=1, le=5)


class ResponseRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)


def recalc_store_reviews(store_id: str) -> None:
    """Refresh the store's average_rating and total_reviews from approved reviews."""
    agg = list(db["review"].aggregate([
        {"$match": {"store_id": store_id, "is_approved": True}},
        {"$group": {"_id": "$store_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    average = round_places(agg[0]["avg"], 1) if agg else 0
    count = agg[0]["count"] if agg else 0
    db["store"].update_one({"_id": to_obj_id(store_id)}, {"$set": {"average_rating": average, "total_reviews": count}})


def _with_author(review: Dict[str, Any]) -> Dict[str, Any]:
    r = sanitize(review)
    r.pop("voted_users", None)
    user = db["user"].find_one({"_id": to_obj_id(review["user_id"])}, {"name": 1, "avatar": 1})
    r["user"] = {"name": user.get("name"), "avatar": user.get("avatar")} if user else None
    return r


def _own_review(review_id: str, user: Dict[str, Any], allow_admin: bool = False) -> Dict[str, Any]:
    review = find_or_404("review", review_id, "Review")
    if review["user_id"] != user["id"] and not (allow_admin and user.get("role") == "admin"):
        raise HTTPException(status_code=403, detail="Not authorized to change this review")
    return review


@router.get("/store/{store_id}")
def store_reviews(
    store_id: str,
    rating: Optional[int] = Query(None, ge=1, le=5),
    sort_by: Literal["created_at", "rating", "helpful_votes"] = "created_at",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
):
    q: Dict[str, Any] = {"store_id": store_id, "is_approved": True}
    if rating:
        q["rating"] = rating
    total = db["review"].count_documents(q)
    cursor = db["review"].find(q).sort(sort_by, -1).skip((page - 1) * limit).limit(limit)
    return {
        "reviews": [_with_author(r) for r in cursor],
        "pagination": {"page": page, "pages": ceil(total / limit) if total else 0, "total": total},
    }


@router.get("/store/{store_id}/stats")
def store_review_stats(store_id: str):
    reviews = get_documents("review", {"store_id": store_id, "is_approved": True})
    stats: Dict[str, Any] = {
        "total_reviews": len(reviews),
        "average_rating": round_places(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else 0,
    }
    for field in SUB_RATINGS:
        values = [r[field] for r in reviews if r.get(field)]
        stats[f"average_{field}"] = round_places(sum(values) / len(values), 2) if values else 0
    distribution = {str(star): 0 for star in range(5, 0, -1)}
    for r in reviews:
        distribution[str(r["rating"])] += 1
    stats["rating_distribution"] = distribution
    return stats


@router.get("/my-reviews")
def my_reviews(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50), current_user=Depends(get_current_user)):
    q = {"user_id": current_user["id"]}
    total = db["review"].count_documents(q)
    cursor = db["review"].find(q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    out = []
    for review in cursor:
        r = sanitize(review)
        store = db["store"].find_one({"_id": to_obj_id(review["store_id"])}, {"name": 1, "logo": 1})
        r["store"] = {"name": store.get("name"), "logo": store.get("logo")} if store else None
        out.append(r)
    return {"reviews": out, "pagination": {"page": page, "pages": ceil(total / limit) if total else 0, "total": total}}


@router.get("/can-review")
def reviewable_orders(current_user=Depends(get_current_user)):
    """Delivered orders the caller has not reviewed yet."""
    reviewed = {r["order_id"] for r in db["review"].find({"user_id": current_user["id"]}, {"order_id": 1})}
    orders = db["order"].find({"customer_id": current_user["id"], "status": "delivered"}).sort("created_at", -1)
    return [
        {"id": str(o["_id"]), "order_number": o["order_number"], "store_id": o["store_id"], "created_at": o.get("created_at")}
        for o in orders
        if str(o["_id"]) not in reviewed
    ]


@router.post("", status_code=201)
def create_review(payload: CreateReviewRequest, current_user=Depends(get_current_user)):
    order = db["order"].find_one({
        "_id": to_obj_id(payload.order_id),
        "customer_id": current_user["id"],
        "store_id": payload.store_id,
        "status": "delivered",
    })
    if not order:
        raise HTTPException(status_code=404, detail="Order not found or not eligible for review")
    if db["review"].find_one({"user_id": current_user["id"], "order_id": payload.order_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this order")

    doc = ReviewSchema(user_id=current_user["id"], **payload.model_dump()).model_dump()
    doc.update({"created_at": now_utc(), "updated_at": now_utc()})
    try:
        res = db["review"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already reviewed this order")
    doc["_id"] = res.inserted_id
    recalc_store_reviews(payload.store_id)
    logger.info("Review %s created for store %s", res.inserted_id, payload.store_id)
    return _with_author(doc)


@router.put("/{review_id}")
def update_review(review_id: str, payload: UpdateReviewRequest, current_user=Depends(get_current_user)):
    review = _own_review(review_id, current_user)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    updates["updated_at"] = now_utc()
    db["review"].update_one({"_id": review["_id"]}, {"$set": updates})
    recalc_store_reviews(review["store_id"])
    return _with_author(db["review"].find_one({"_id": review["_id"]}))


@router.delete("/{review_id}")
def delete_review(review_id: str, current_user=Depends(get_current_user)):
    review = _own_review(review_id, current_user, allow_admin=True)
    db["review"].delete_one({"_id": review["_id"]})
    recalc_store_reviews(review["store_id"])
    return {"message": "Review deleted successfully"}


@router.post("/{review_id}/helpful")
def toggle_helpful(review_id: str, current_user=Depends(get_current_user)):
    review = find_or_404("review", review_id, "Review")
    voted = current_user["id"] in (review.get("voted_users") or [])
    if voted:
        update = {"$pull": {"voted_users": current_user["id"]}, "$inc": {"helpful_votes": -1}}
    else:
        update = {"$addToSet": {"voted_users": current_user["id"]}, "$inc": {"helpful_votes": 1}}
    db["review"].update_one({"_id": review["_id"]}, update)
    fresh = db["review"].find_one({"_id": review["_id"]})
    return {"helpful_votes": fresh["helpful_votes"], "has_voted": not voted}


@router.post("/{review_id}/report")
def report_review(review_id: str, current_user=Depends(get_current_user)):
    review = find_or_404("review", review_id, "Review")
    count = review.get("report_count", 0) + 1
    sets: Dict[str, Any] = {"report_count": count, "is_reported": True}
    hidden = count >= REVIEW_REPORT_THRESHOLD and review.get("is_approved", True)
    if hidden:
        sets["is_approved"] = False
    db["review"].update_one({"_id": review["_id"]}, {"$set": sets})
    if hidden:
        logger.warning("Review %s hidden after %d reports", review_id, count)
        recalc_store_reviews(review["store_id"])
    return {"message": "Review reported successfully"}


@router.post("/{review_id}/response")
def respond_to_review(review_id: str, payload: ResponseRequest, current_user=Depends(get_current_user)):
    review = find_or_404("review", review_id, "Review")
    store = find_or_404("store", review["store_id"], "Store")
    assert_store_manager(store, current_user)
    reply = {"message": payload.message, "responded_at": now_utc(), "responded_by": current_user["id"]}
    db["review"].update_one({"_id": review["_id"]}, {"$set": {"store_response": reply, "updated_at": now_utc()}})
    return _with_author(db["review"].find_one({"_id": review["_id"]}))
