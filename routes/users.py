from fastapi import APIRouter, Depends, HTTPException

from database import db, find_or_404, now_utc, sanitize, to_obj_id
from schemas import Address
from security import get_current_user

router = APIRouter(prefix="/users", tags=["users"])


def _reload(user_id: str):
    return sanitize(db["user"].find_one({"_id": to_obj_id(user_id)}))


@router.get("/profile")
def profile(current_user=Depends(get_current_user)):
    return current_user


@router.post("/addresses", status_code=201)
def add_address(payload: Address, current_user=Depends(get_current_user)):
    addresses = list(current_user.get("addresses") or [])
    address = payload.model_dump()
    # the first address is always the default
    if not addresses:
        address["is_default"] = True
    elif address["is_default"]:
        for a in addresses:
            a["is_default"] = False
    addresses.append(address)
    db["user"].update_one(
        {"_id": to_obj_id(current_user["id"])},
        {"$set": {"addresses": addresses, "updated_at": now_utc()}},
    )
    return _reload(current_user["id"])


@router.delete("/addresses/{index}")
def delete_address(index: int, current_user=Depends(get_current_user)):
    addresses = list(current_user.get("addresses") or [])
    if not 0 <= index < len(addresses):
        raise HTTPException(status_code=404, detail="Address not found")
    removed = addresses.pop(index)
    if removed.get("is_default") and addresses:
        addresses[0]["is_default"] = True
    db["user"].update_one(
        {"_id": to_obj_id(current_user["id"])},
        {"$set": {"addresses": addresses, "updated_at": now_utc()}},
    )
    return _reload(current_user["id"])


@router.put("/addresses/{index}/default")
def set_default_address(index: int, current_user=Depends(get_current_user)):
    addresses = list(current_user.get("addresses") or [])
    if not 0 <= index < len(addresses):
        raise HTTPException(status_code=404, detail="Address not found")
    for i, a in enumerate(addresses):
        a["is_default"] = i == index
    db["user"].update_one(
        {"_id": to_obj_id(current_user["id"])},
        {"$set": {"addresses": addresses, "updated_at": now_utc()}},
    )
    return _reload(current_user["id"])


@router.post("/favorites/{store_id}")
def toggle_favorite(store_id: str, current_user=Depends(get_current_user)):
    find_or_404("store", store_id, "Store")
    favorites = current_user.get("favorite_stores") or []
    if store_id in favorites:
        update = {"$pull": {"favorite_stores": store_id}}
        is_favorite = False
    else:
        update = {"$addToSet": {"favorite_stores": store_id}}
        is_favorite = True
    db["user"].update_one({"_id": to_obj_id(current_user["id"])}, update)
    return {"store_id": store_id, "is_favorite": is_favorite}


@router.get("/loyalty")
def loyalty(current_user=Depends(get_current_user)):
    earned = list(db["order"].find(
        {"customer_id": current_user["id"], "loyalty_points_earned": {"$gt": 0}},
        {"order_number": 1, "loyalty_points_earned": 1, "timing.delivered_at": 1},
    ).sort("created_at", -1).limit(20))
    return {
        "loyalty_points": current_user.get("loyalty_points", 0),
        "recent": [sanitize(o) for o in earned],
    }
