# routes/schedule_routes.py
from fastapi import APIRouter, Depends

from models.schedule_models import ScheduleCreate, ScheduleUpdate
from services import schedule_service
from services.auth_service import current_user
from services.db_service import get_db

router = APIRouter(prefix="/api/users/test-schedule", tags=["Test Schedule"])


@router.get("")
def list_schedules(user=Depends(current_user), db=Depends(get_db)):
    return {"ok": True, "schedules": schedule_service.list_schedules(db, user["user_id"])}


@router.post("", status_code=201)
def create_schedule(schedule: ScheduleCreate, user=Depends(current_user), db=Depends(get_db)):
    created = schedule_service.create_schedule(db, user["user_id"], schedule)
    return {"ok": True, "message": "Test scheduled successfully", "schedule": created}


@router.put("/{schedule_id}")
def update_schedule(
    schedule_id: str,
    update: ScheduleUpdate,
    user=Depends(current_user),
    db=Depends(get_db),
):
    updated = schedule_service.update_schedule(db, user["user_id"], schedule_id, update)
    return {"ok": True, "message": "Schedule updated successfully", "schedule": updated}


@router.delete("/{schedule_id}")
def delete_schedule(schedule_id: str, user=Depends(current_user), db=Depends(get_db)):
    schedule_service.delete_schedule(db, user["user_id"], schedule_id)
    return {"ok": True, "message": "Schedule deleted successfully"}
