# routes/trial_routes.py
# Public stimulus sets; answers are never sent.
from fastapi import APIRouter

from services.trial_service import describe, get_definition, list_definitions

router = APIRouter(prefix="/api/trials", tags=["Trials"])


@router.get("")
async def all_tests():
    return {"ok": True, "tests": [describe(d) for d in list_definitions()]}


@router.get("/{test_type}")
async def test_trials(test_type: str):
    return {"ok": True, "test": describe(get_definition(test_type))}
