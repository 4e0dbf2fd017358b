"""
Database helpers

One MongoClient per process. Collections are named after the lower-cased
schema class (Order -> "order").
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from logger import get_logger

logger = get_logger(__name__)

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    """Turn a raw document into a JSON-friendly dict (`_id` -> `id`)."""
    if not doc:
        return doc
    d = _clean(doc)
    if "_id" in d:
        d["id"] = d.pop("_id")
    d.pop("password_hash", None)
    return d


def create_document(collection_name: str, data: Any) -> str:
    """Insert a document (dict or pydantic model) with timestamps and return its id."""
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    doc = dict(data)
    doc.setdefault("created_at", now_utc())
    doc["updated_at"] = now_utc()
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict] = None, limit: Optional[int] = None) -> List[Dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["store"].create_index([("owner_id", ASCENDING)])
    db["store"].create_index([("rating.average", DESCENDING)])
    db["category"].create_index([("slug", ASCENDING)], unique=True)
    db["product"].create_index([("store_id", ASCENDING), ("is_available", ASCENDING)])
    db["cart"].create_index([("user_id", ASCENDING), ("store_id", ASCENDING)], unique=True)
    db["cart"].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
    db["order"].create_index([("order_number", ASCENDING)], unique=True)
    db["order"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("store_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)])
    db["review"].create_index([("user_id", ASCENDING), ("order_id", ASCENDING)], unique=True)
    db["review"].create_index([("store_id", ASCENDING), ("created_at", DESCENDING)])
    db["coupon"].create_index([("code", ASCENDING)], unique=True)
    logger.info("MongoDB indexes ensured on %s", DATABASE_NAME)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def find_or_404(collection_name: str, id_str: Any, label: str, extra: Optional[Dict] = None) -> Dict:
    query = {"_id": to_obj_id(id_str)}
    if extra:
        query.update(extra)
    doc = db[collection_name].find_one(query)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc
