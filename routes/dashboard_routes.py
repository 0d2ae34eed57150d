# routes/dashboard_routes.py
from fastapi import APIRouter, Depends

from routes.dependencies import get_gateway
from services.auth_service import current_user
from services.db_service import get_db
from services.profile_service import get_user_document

router = APIRouter(prefix="/api/users", tags=["Dashboard"])


@router.get("/dashboard")
def get_dashboard(user=Depends(current_user), db=Depends(get_db), gateway=Depends(get_gateway)):
    user_doc = get_user_document(db, user["user_id"])
    return {"ok": True, "dashboard": gateway.dashboard(user_doc)}
