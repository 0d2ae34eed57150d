# models/cognitive_models.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field


class TestType(str, Enum):
    WORD_RECALL = "word_recall"
    STROOP = "stroop"
    PATTERN_RECOGNITION = "pattern_recognition"


class PerformanceLevel(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class SessionPhase(str, Enum):
    INSTRUCTIONS = "instructions"
    RUNNING = "running"
    RESULTS = "results"


class RecallPhase(str, Enum):
    STUDY = "study"
    DELAY = "delay"
    RECALL = "recall"


# --- Trial definitions (immutable stimuli) ---

class PatternTrial(BaseModel):
    pattern: List[int]
    options: List[int]
    correct_answer: int
    explanation: str

    model_config = {"frozen": True}


class StroopTrial(BaseModel):
    word: str
    color: str
    correct_answer: str

    model_config = {"frozen": True}


class StudyWord(BaseModel):
    word: str

    model_config = {"frozen": True}


TrialDefinition = Union[PatternTrial, StroopTrial, StudyWord]


class TestDefinition(BaseModel):
    test_type: TestType
    name: str
    trials: Tuple[TrialDefinition, ...]
    trial_seconds: int = 0      # per-trial countdown, 0 = no countdown
    feedback_seconds: int = 0   # input disabled while feedback is shown
    study_seconds: int = 0      # word recall only
    delay_seconds: int = 0      # word recall only

    model_config = {"frozen": True}

    @property
    def total_trials(self) -> int:
        return len(self.trials)


# --- Outcomes and results ---

class TrialOutcome(BaseModel):
    trial_index: int
    presented_at: datetime
    responded_at: Optional[datetime] = None  # None = timed out
    selected_value: Optional[Union[int, str]] = None
    is_correct: bool = False
    response_time_seconds: Optional[float] = None

    model_config = {"frozen": True}

    @property
    def timed_out(self) -> bool:
        return self.responded_at is None


class CompletionEvent(BaseModel):
    """Payload every test component emits when its trial loop ends."""
    final_score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NormalizedResult(BaseModel):
    test_type: TestType
    score: float = Field(ge=0, le=10)
    max_score: int = 10
    percentage: int = Field(ge=0, le=100)
    performance_level: PerformanceLevel
    time_taken_seconds: Optional[int] = None
    completed_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
