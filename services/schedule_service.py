# services/schedule_service.py
# Planned tests. Reminder delivery lives outside this service.
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List

from pymongo.errors import PyMongoError

from models.schedule_models import ScheduleCreate, ScheduleUpdate
from services.db_service import TEST_SCHEDULES, to_object_id
from services.errors import NotFoundError, PersistenceError


def _as_datetime(day: date) -> datetime:
    # BSON has no date type
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def serialize_schedule(doc: Dict[str, Any]) -> Dict[str, Any]:
    scheduled = doc.get("scheduled_date")
    return {
        "id": str(doc["_id"]),
        "test_type": doc["test_type"],
        "scheduled_date": scheduled.date().isoformat() if isinstance(scheduled, datetime) else scheduled,
        "scheduled_time": doc.get("scheduled_time"),
        "frequency": doc.get("frequency", "weekly"),
        "status": doc.get("status", "scheduled"),
        "reminder_sent": doc.get("reminder_sent", False),
        "notes": doc.get("notes"),
    }


def list_schedules(db, user_id) -> List[Dict[str, Any]]:
    try:
        docs = db[TEST_SCHEDULES].find({"user_id": to_object_id(user_id)}).sort("scheduled_date", 1)
        return [serialize_schedule(d) for d in docs]
    except PyMongoError as e:
        raise PersistenceError(f"Failed to load schedules: {e}") from e


def create_schedule(db, user_id, schedule: ScheduleCreate) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    doc = {
        "user_id": to_object_id(user_id),
        "test_type": schedule.test_type.value,
        "scheduled_date": _as_datetime(schedule.scheduled_date),
        "scheduled_time": schedule.scheduled_time,
        "frequency": schedule.frequency.value,
        "status": "scheduled",
        "reminder_sent": False,
        "notes": schedule.notes,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = db[TEST_SCHEDULES].insert_one(doc)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to save schedule: {e}") from e
    doc["_id"] = result.inserted_id
    return serialize_schedule(doc)


def update_schedule(db, user_id, schedule_id, update: ScheduleUpdate) -> Dict[str, Any]:
    changes = {k: v for k, v in update.model_dump(mode="json").items() if v is not None}
    if "scheduled_date" in changes:
        changes["scheduled_date"] = _as_datetime(update.scheduled_date)
    changes["updated_at"] = datetime.now(timezone.utc)

    query = {"_id": to_object_id(schedule_id), "user_id": to_object_id(user_id)}
    try:
        result = db[TEST_SCHEDULES].update_one(query, {"$set": changes})
        if result.matched_count == 0:
            raise NotFoundError("Schedule not found")
        doc = db[TEST_SCHEDULES].find_one(query)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to update schedule: {e}") from e
    return serialize_schedule(doc)


def delete_schedule(db, user_id, schedule_id) -> None:
    query = {"_id": to_object_id(schedule_id), "user_id": to_object_id(user_id)}
    try:
        result = db[TEST_SCHEDULES].delete_one(query)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to delete schedule: {e}") from e
    if result.deleted_count == 0:
        raise NotFoundError("Schedule not found")
