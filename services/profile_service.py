# services/profile_service.py
from typing import Any, Dict

from pymongo.errors import PyMongoError

from models.user_model import UserProfile
from services.db_service import USERS, to_object_id
from services.errors import NotFoundError, PersistenceError


def get_user_document(db, user_id) -> Dict[str, Any]:
    try:
        user_doc = db[USERS].find_one({"_id": to_object_id(user_id)})
    except PyMongoError as e:
        raise PersistenceError(f"Failed to load user: {e}") from e
    if not user_doc:
        raise NotFoundError("User not found")
    return user_doc


def profile_from_document(user_doc: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=str(user_doc["_id"]),
        age=user_doc.get("age") or 0,
        family_history=user_doc.get("family_history") or "",
        medical_conditions=user_doc.get("medical_conditions") or "",
    )


def get_user_profile(db, user_id) -> UserProfile:
    return profile_from_document(get_user_document(db, user_id))


def to_user_response(user_doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user_doc["_id"]),
        "email": user_doc["email"],
        "first_name": user_doc.get("first_name", ""),
        "last_name": user_doc.get("last_name", ""),
        "age": user_doc.get("age"),
        "gender": user_doc.get("gender", ""),
        "family_history": user_doc.get("family_history", ""),
        "medical_conditions": user_doc.get("medical_conditions", ""),
    }
