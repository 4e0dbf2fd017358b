import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import create_document, db, sanitize, to_obj_id
from logger import get_logger
from schemas import Category as CategorySchema
from security import require_role

logger = get_logger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


class CreateCategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    slug: Optional[str] = None
    description: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = None
    image: Optional[str] = None
    color: str = "#3B82F6"
    parent_id: Optional[str] = None
    sort_order: int = 0
    is_featured: bool = False


def slugify(name: str) -> str:
    return re.sub(r"(^-|-$)", "", re.sub(r"[^a-z0-9]+", "-", name.lower()))


def category_path(category: dict) -> list:
    """Breadcrumb from the root category down to `category`."""
    path = [category]
    current = category
    seen = {current["_id"]}
    while current.get("parent_id"):
        current = db["category"].find_one({"_id": to_obj_id(current["parent_id"])})
        if not current or current["_id"] in seen:
            break
        seen.add(current["_id"])
        path.insert(0, current)
    return path


@router.get("")
def list_categories(parent_id: Optional[str] = None, featured: Optional[bool] = None):
    q = {"is_active": True, "parent_id": parent_id}
    if featured is not None:
        q["is_featured"] = featured
    cats = [sanitize(c) for c in db["category"].find(q).sort([("sort_order", 1), ("name", 1)])]
    for c in cats:
        c["store_count"] = db["store"].count_documents({"category_id": c["id"], "is_active": True})
    return cats


@router.get("/{slug}")
def get_category(slug: str):
    category = db["category"].find_one({"slug": slug, "is_active": True})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    subs = db["category"].find({"parent_id": str(category["_id"]), "is_active": True}).sort([("sort_order", 1), ("name", 1)])
    return {
        "category": sanitize(category),
        "subcategories": [sanitize(s) for s in subs],
        "path": [{"name": c["name"], "slug": c["slug"]} for c in category_path(category)],
    }


@router.post("", status_code=201)
def create_category(payload: CreateCategoryRequest, admin=Depends(require_role("admin"))):
    slug = payload.slug or slugify(payload.name)
    if db["category"].find_one({"$or": [{"slug": slug}, {"name": payload.name}]}):
        raise HTTPException(status_code=409, detail="Category already exists")
    level = 0
    if payload.parent_id:
        parent = db["category"].find_one({"_id": to_obj_id(payload.parent_id)})
        if not parent:
            raise HTTPException(status_code=400, detail="Parent category not found")
        level = parent.get("level", 0) + 1
    category_id = create_document("category", CategorySchema(**payload.model_dump(exclude={"slug"}), slug=slug, level=level))
    logger.info("Category %s created", slug)
    return sanitize(db["category"].find_one({"_id": to_obj_id(category_id)}))
