# routes/session_routes.py
# Live sessions: the server runs the trial loop and its timers.
# Handlers stay on the event loop; blocking store calls go through to_thread.

import asyncio

from fastapi import APIRouter, Depends

from models.cognitive_models import SessionPhase
from models.session_models import QuitRequest, RecallSubmission, SessionCreate, TrialResponse
from routes.dependencies import get_gateway, get_registry
from services.auth_service import current_user
from services.db_service import get_db
from services.errors import SessionStateError
from services.profile_service import get_user_profile

router = APIRouter(prefix="/api/sessions", tags=["Test Sessions"])


@router.post("", status_code=201)
async def create_session(
    body: SessionCreate,
    user=Depends(current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
    registry=Depends(get_registry),
):
    """Open a session in the instructions phase. Replaces any live session of the user."""
    profile = await asyncio.to_thread(get_user_profile, db, user["user_id"])
    session = registry.create(user["user_id"], body.test_type, profile, gateway)
    return {"ok": True, "session": session.snapshot()}


@router.get("/{session_id}")
async def get_session(session_id: str, user=Depends(current_user), registry=Depends(get_registry)):
    session = registry.get(session_id, user["user_id"])
    return {"ok": True, "session": session.snapshot()}


@router.post("/{session_id}/start")
async def start_session(session_id: str, user=Depends(current_user), registry=Depends(get_registry)):
    session = registry.get(session_id, user["user_id"])
    session.start()
    return {"ok": True, "session": session.snapshot()}


@router.post("/{session_id}/responses")
async def submit_response(
    session_id: str,
    body: TrialResponse,
    user=Depends(current_user),
    registry=Depends(get_registry),
):
    session = registry.get(session_id, user["user_id"])
    outcome = session.respond(body.trial_index, body.value)
    return {
        "ok": True,
        "correct": outcome.is_correct,
        "response_time_seconds": outcome.response_time_seconds,
        "session": session.snapshot(),
    }


@router.post("/{session_id}/recall")
async def submit_recall(
    session_id: str,
    body: RecallSubmission,
    user=Depends(current_user),
    registry=Depends(get_registry),
):
    session = registry.get(session_id, user["user_id"])
    session.submit_recall(body.words)
    return {"ok": True, "session": session.snapshot()}


@router.post("/{session_id}/quit")
async def quit_session(
    session_id: str,
    body: QuitRequest,
    user=Depends(current_user),
    registry=Depends(get_registry),
):
    session = registry.get(session_id, user["user_id"])
    session.quit(body.confirm)
    registry.remove(session.id)
    return {"ok": True, "message": "Test abandoned; nothing was saved"}


@router.post("/{session_id}/retake")
async def retake_session(session_id: str, user=Depends(current_user), registry=Depends(get_registry)):
    session = registry.get(session_id, user["user_id"])
    session.retake()
    return {"ok": True, "session": session.snapshot()}


@router.post("/{session_id}/save")
async def save_session(session_id: str, user=Depends(current_user), registry=Depends(get_registry)):
    """Persist result and risk. On failure the session stays in results for a retry."""
    session = registry.get(session_id, user["user_id"])
    saved = await session.save()
    registry.remove(session.id)
    return {"ok": True, "message": "Test result saved successfully", **saved}


@router.delete("/{session_id}")
async def discard_session(session_id: str, user=Depends(current_user), registry=Depends(get_registry)):
    session = registry.get(session_id, user["user_id"])
    if session.phase is SessionPhase.RUNNING:
        raise SessionStateError("A running test is left with quit, which needs confirmation")
    if session.phase is SessionPhase.RESULTS:
        session.discard()
    registry.remove(session.id)
    return {"ok": True, "message": "Session discarded"}
