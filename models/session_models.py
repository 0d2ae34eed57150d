# models/session_models.py
# Request bodies for live sessions and client-run submissions.

from datetime import datetime, timezone
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from models.cognitive_models import TestType


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive timestamps from clients are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionCreate(BaseModel):
    test_type: TestType


class TrialResponse(BaseModel):
    trial_index: int = Field(ge=0)
    value: Union[int, str]


class RecallSubmission(BaseModel):
    words: List[str]


class QuitRequest(BaseModel):
    confirm: bool = False


class RawTrialOutcome(BaseModel):
    trial_index: int = Field(ge=0)
    presented_at: datetime
    responded_at: Optional[datetime] = None
    selected_value: Optional[Union[int, str]] = None

    normalize_timestamps = field_validator("presented_at", "responded_at")(_as_utc)


class SessionSubmission(BaseModel):
    """A session the client ran itself; the server re-scores it."""
    session_key: UUID
    test_type: TestType
    started_at: datetime
    ended_at: datetime
    outcomes: List[RawTrialOutcome] = Field(default_factory=list)
    recall_words: Optional[List[str]] = None

    normalize_timestamps = field_validator("started_at", "ended_at")(_as_utc)

    model_config = {
        "json_schema_extra": {
            "example": {
                "session_key": "3f1c2a9e-1c51-4c0b-9d0a-6a2d3f2b8e11",
                "test_type": "pattern_recognition",
                "started_at": "2026-01-05T10:00:00Z",
                "ended_at": "2026-01-05T10:02:10Z",
                "outcomes": [
                    {
                        "trial_index": 0,
                        "presented_at": "2026-01-05T10:00:00Z",
                        "responded_at": "2026-01-05T10:00:04Z",
                        "selected_value": 12
                    }
                ]
            }
        }
    }
