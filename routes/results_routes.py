# routes/results_routes.py
# Stored results, history and risk for the signed-in user.
# Handlers are plain functions so pymongo calls run in the threadpool,
# away from the loop that drives live session countdowns.

from fastapi import APIRouter, Depends, Query

from models.session_models import SessionSubmission
from routes.dependencies import get_gateway
from services.auth_service import current_user
from services.db_service import get_db
from services.evaluation_service import evaluate_stored_risk, evaluate_submission
from services.profile_service import get_user_document, get_user_profile, profile_from_document

router = APIRouter(prefix="/api", tags=["Test Results"])


@router.post("/results", status_code=201)
def submit_result(
    submission: SessionSubmission,
    user=Depends(current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
):
    """Accept a session run by the client. The score and risk are recomputed here."""
    profile = get_user_profile(db, user["user_id"])
    result, risk = evaluate_submission(submission, profile)

    saved_result = gateway.save_result(user["user_id"], result, submission.session_key)
    saved_risk = gateway.save_risk(user["user_id"], risk, submission.ended_at, submission.session_key)

    return {
        "ok": True,
        "message": "Test result saved successfully",
        "result": saved_result,
        "risk": saved_risk,
    }


@router.get("/results")
def recent_results(
    limit: int = Query(10, ge=1, le=100),
    user=Depends(current_user),
    gateway=Depends(get_gateway),
):
    return {"ok": True, "results": gateway.list_recent_results(user["user_id"], limit)}


@router.get("/tests/history")
def test_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    test_type: str = None,
    user=Depends(current_user),
    gateway=Depends(get_gateway),
):
    history = gateway.test_history(user["user_id"], limit=limit, offset=offset, test_type=test_type)
    return {"ok": True, "history": history, "count": len(history)}


@router.get("/tests/result/{result_id}")
def test_result(result_id: str, user=Depends(current_user), gateway=Depends(get_gateway)):
    return {"ok": True, "result": gateway.get_result(user["user_id"], result_id)}


@router.get("/risk/latest")
def latest_risk(user=Depends(current_user), gateway=Depends(get_gateway)):
    return {"ok": True, "risk": gateway.latest_risk(user["user_id"])}


@router.post("/evaluation/evaluate", status_code=201)
def evaluate_risk(user=Depends(current_user), db=Depends(get_db), gateway=Depends(get_gateway)):
    """Blend the last three months of stored tests into a new risk evaluation."""
    user_doc = get_user_document(db, user["user_id"])
    outcome = evaluate_stored_risk(gateway, profile_from_document(user_doc))
    return {
        "ok": True,
        "message": "Risk evaluation completed successfully",
        "evaluation_id": outcome["evaluation"]["id"],
        "risk_assessment": outcome["risk_assessment"],
        "user_profile": {
            "age": user_doc.get("age"),
            "gender": user_doc.get("gender", ""),
            "family_history": user_doc.get("family_history", ""),
            "medical_conditions": user_doc.get("medical_conditions", ""),
        },
        "cognitive_summary": outcome["cognitive_summary"],
    }
