import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

from models.user_model import UserCreate, UserLogin, UserUpdate
from services.auth_service import create_access_token, current_user, hash_password, verify_password
from services.db_service import USERS, get_db, to_object_id
from services.profile_service import get_user_document, to_user_response

router = APIRouter(prefix="/api/auth", tags=["Auth"])
logger = logging.getLogger(__name__)

# --- REGISTER ---
@router.post("/register", status_code=201)
def register(user: UserCreate, db=Depends(get_db)):
    # Check if user exists
    if db[USERS].find_one({"email": user.email}):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    now = datetime.now(timezone.utc)
    user_doc = {
        "email": user.email,
        "password_hash": hash_password(user.password),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "age": user.age,
        "gender": user.gender,
        "family_history": user.family_history or "",
        "medical_conditions": user.medical_conditions or "",
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = db[USERS].insert_one(user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User with this email already exists")
    user_doc["_id"] = result.inserted_id
    logger.info("Registered user %s", result.inserted_id)

    return {
        "ok": True,
        "message": "User created successfully",
        "token": create_access_token(str(result.inserted_id), user.email),
        "user": to_user_response(user_doc),
    }

# --- LOGIN ---
@router.post("/login")
def login(user: UserLogin, db=Depends(get_db)):
    user_doc = db[USERS].find_one({"email": user.email.strip().lower()})
    if not user_doc or not verify_password(user.password, user_doc["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return {
        "ok": True,
        "message": "Login successful",
        "token": create_access_token(str(user_doc["_id"]), user_doc["email"]),
        "user": to_user_response(user_doc),
    }

# --- GET PROFILE ---
@router.get("/profile")
def get_profile(user=Depends(current_user), db=Depends(get_db)):
    user_doc = get_user_document(db, user["user_id"])
    return {"user": to_user_response(user_doc)}

# --- UPDATE PROFILE ---
@router.put("/profile")
def update_profile(update_data: UserUpdate, user=Depends(current_user), db=Depends(get_db)):
    update_dict = update_data.model_dump()
    update_dict["family_history"] = update_dict["family_history"] or ""
    update_dict["medical_conditions"] = update_dict["medical_conditions"] or ""
    update_dict["updated_at"] = datetime.now(timezone.utc)

    result = db[USERS].update_one(
        {"_id": to_object_id(user["user_id"])},
        {"$set": update_dict}
    )

    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    return {"ok": True, "message": "Profile updated successfully"}
