import re
from math import ceil
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import create_document, db, find_or_404, now_utc, sanitize
from logger import get_logger
from pricing import product_final_price
from routes.stores import assert_store_manager
from schemas import Product as ProductSchema, ProductAddon, ProductDiscount, ProductImage, ProductOption
from security import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


class CreateProductRequest(BaseModel):
    store_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: str
    images: List[ProductImage] = []
    price: float = Field(..., ge=0)
    options: List[ProductOption] = []
    addons: List[ProductAddon] = []
    tags: List[str] = []
    preparation_time: int = Field(10, ge=0)
    is_available: bool = True
    stock: Optional[int] = Field(None, ge=0)
    is_featured: bool = False
    discount: Optional[ProductDiscount] = None


class UpdateProductRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = None
    images: Optional[List[ProductImage]] = None
    price: Optional[float] = Field(None, ge=0)
    options: Optional[List[ProductOption]] = None
    addons: Optional[List[ProductAddon]] = None
    tags: Optional[List[str]] = None
    preparation_time: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    discount: Optional[ProductDiscount] = None


class StockUpdateRequest(BaseModel):
    stock: Optional[int] = Field(None, ge=0, description="None switches to unlimited stock")


def _public_product(product: Dict[str, Any]) -> Dict[str, Any]:
    p = sanitize(product)
    p["final_price"] = product_final_price(product)
    return p


@router.get("")
def list_products(
    store_id: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1),
    featured: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    q: Dict[str, Any] = {"is_available": True}
    if store_id:
        q["store_id"] = store_id
    if category:
        q["category"] = category
    if featured is not None:
        q["is_featured"] = featured
    if search:
        pattern = re.escape(search)
        q["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    total = db["product"].count_documents(q)
    cursor = db["product"].find(q).sort([("total_orders", -1), ("name", 1)]).skip((page - 1) * limit).limit(limit)
    return {
        "products": [_public_product(p) for p in cursor],
        "pagination": {"page": page, "pages": ceil(total / limit) if total else 0, "total": total},
    }


@router.get("/{product_id}")
def get_product(product_id: str):
    return _public_product(find_or_404("product", product_id, "Product"))


@router.post("", status_code=201)
def create_product(payload: CreateProductRequest, current_user=Depends(get_current_user)):
    store = find_or_404("store", payload.store_id, "Store")
    assert_store_manager(store, current_user)
    product_id = create_document("product", ProductSchema(**payload.model_dump()))
    logger.info("Product %s added to store %s", product_id, payload.store_id)
    return _public_product(find_or_404("product", product_id, "Product"))


def _managed_product(product_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    product = find_or_404("product", product_id, "Product")
    store = find_or_404("store", product["store_id"], "Store")
    assert_store_manager(store, user)
    return product


@router.put("/{product_id}")
def update_product(product_id: str, payload: UpdateProductRequest, current_user=Depends(get_current_user)):
    product = _managed_product(product_id, current_user)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    updates["updated_at"] = now_utc()
    db["product"].update_one({"_id": product["_id"]}, {"$set": updates})
    return _public_product(db["product"].find_one({"_id": product["_id"]}))


@router.patch("/{product_id}/stock")
def update_stock(product_id: str, payload: StockUpdateRequest, current_user=Depends(get_current_user)):
    product = _managed_product(product_id, current_user)
    sets = {
        "stock": payload.stock,
        "is_available": payload.stock is None or payload.stock > 0,
        "updated_at": now_utc(),
    }
    db["product"].update_one({"_id": product["_id"]}, {"$set": sets})
    return _public_product(db["product"].find_one({"_id": product["_id"]}))


@router.delete("/{product_id}")
def delete_product(product_id: str, current_user=Depends(get_current_user)):
    product = _managed_product(product_id, current_user)
    db["product"].delete_one({"_id": product["_id"]})
    return {"message": "Product deleted"}
