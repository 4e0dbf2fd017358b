from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import db, now_utc, sanitize, to_obj_id
from logger import get_logger
from schemas import Preferences, User as UserSchema
from security import create_access_token, get_current_user, hash_password, verify_password

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# Request/Response Models
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    role: Literal["client", "store_owner"] = "client"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, min_length=6, max_length=20)
    avatar: Optional[str] = None
    preferences: Optional[Preferences] = None


class UpdatePasswordRequest(BaseModel):
    old_password: str
    new_password: str


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterRequest):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="User already exists with this email")
    user_doc = UserSchema(
        name=payload.name.strip(),
        email=email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        role=payload.role,
    ).model_dump()
    user_doc.update({"created_at": now_utc(), "updated_at": now_utc()})
    res = db["user"].insert_one(user_doc)
    user_doc["_id"] = res.inserted_id
    logger.info("Registered %s user %s", payload.role, res.inserted_id)
    token = create_access_token({"sub": str(res.inserted_id)})
    return TokenResponse(access_token=token, user=sanitize(user_doc))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    user = db["user"].find_one({"email": payload.email.lower(), "is_active": True})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now_utc()}})
    token = create_access_token({"sub": str(user["_id"])})
    return TokenResponse(access_token=token, user=sanitize(user))


@router.get("/me")
def me(current_user=Depends(get_current_user)):
    return current_user


@router.put("/profile")
def update_profile(payload: ProfileUpdateRequest, current_user=Depends(get_current_user)):
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    updates["updated_at"] = now_utc()
    db["user"].update_one({"_id": to_obj_id(current_user["id"])}, {"$set": updates})
    return sanitize(db["user"].find_one({"_id": to_obj_id(current_user["id"])}))


@router.put("/password")
def update_password(payload: UpdatePasswordRequest, current_user=Depends(get_current_user)):
    user = db["user"].find_one({"_id": to_obj_id(current_user["id"])})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.old_password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Old password incorrect")
    new_hash = hash_password(payload.new_password)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"password_hash": new_hash, "updated_at": now_utc()}})
    return {"message": "Password updated"}


@router.post("/logout")
def logout(current_user=Depends(get_current_user)):
    # tokens are stateless; the client drops it
    return {"message": "Logged out successfully"}
