# services/trial_service.py
"""Fixed stimulus sets and timings for each test type.

Trial order and content are static; nothing here is randomized.
"""
from typing import Any, Dict, Tuple

from models.cognitive_models import (
    PatternTrial,
    StroopTrial,
    StudyWord,
    TestDefinition,
    TestType,
    TrialDefinition,
)
from services.errors import ValidationError

STROOP_COLORS = ("red", "blue", "green", "yellow")
STROOP_REPEATS = 3

_PATTERN_TRIALS = (
    PatternTrial(pattern=[2, 4, 6, 8, 10], options=[12, 14, 16, 18], correct_answer=12,
                 explanation="Add 2 to each number"),
    PatternTrial(pattern=[1, 3, 6, 10, 15], options=[21, 25, 28, 30], correct_answer=21,
                 explanation="Add 2, then 3, then 4, then 5, then 6"),
    PatternTrial(pattern=[2, 6, 12, 20, 30], options=[42, 44, 46, 48], correct_answer=42,
                 explanation="Add 4, then 6, then 8, then 10, then 12"),
    PatternTrial(pattern=[1, 2, 4, 8, 16], options=[24, 28, 32, 36], correct_answer=32,
                 explanation="Multiply by 2 each time"),
    PatternTrial(pattern=[3, 6, 12, 24, 48], options=[72, 84, 96, 108], correct_answer=96,
                 explanation="Multiply by 2 each time"),
    PatternTrial(pattern=[1, 4, 9, 16, 25], options=[30, 36, 40, 45], correct_answer=36,
                 explanation="Square numbers: 1, 4, 9, 16, 25, 36"),
    PatternTrial(pattern=[2, 5, 10, 17, 26], options=[35, 37, 39, 41], correct_answer=37,
                 explanation="Add 3, then 5, then 7, then 9, then 11"),
    PatternTrial(pattern=[1, 1, 2, 3, 5], options=[6, 7, 8, 9], correct_answer=8,
                 explanation="Fibonacci sequence: add previous two numbers"),
)

_STROOP_BASE = (
    ("RED", "blue"),
    ("BLUE", "red"),
    ("GREEN", "yellow"),
    ("YELLOW", "green"),
    ("RED", "green"),
    ("BLUE", "yellow"),
    ("GREEN", "red"),
    ("YELLOW", "blue"),
    ("RED", "yellow"),
    ("BLUE", "green"),
)

# Base sequence replicated; repeats are independent trials
_STROOP_TRIALS = tuple(
    StroopTrial(word=word, color=color, correct_answer=color)
    for _ in range(STROOP_REPEATS)
    for word, color in _STROOP_BASE
)

RECALL_WORDS = (
    "apple", "river", "mountain", "ocean", "forest",
    "sunset", "bridge", "garden", "castle", "star",
)

_DEFINITIONS: Dict[TestType, TestDefinition] = {
    TestType.PATTERN_RECOGNITION: TestDefinition(
        test_type=TestType.PATTERN_RECOGNITION,
        name="Pattern Recognition Memory (PRM) Test",
        trials=_PATTERN_TRIALS,
        trial_seconds=15,
        feedback_seconds=3,
    ),
    TestType.STROOP: TestDefinition(
        test_type=TestType.STROOP,
        name="Stroop Color-Word Interference Test",
        trials=_STROOP_TRIALS,
        trial_seconds=5,
        feedback_seconds=2,
    ),
    TestType.WORD_RECALL: TestDefinition(
        test_type=TestType.WORD_RECALL,
        name="Hopkins Verbal Learning Test-Revised (HVLT-R)",
        trials=tuple(StudyWord(word=w) for w in RECALL_WORDS),
        study_seconds=3,
        delay_seconds=30,
    ),
}


def _coerce(test_type) -> TestType:
    try:
        return TestType(test_type)
    except ValueError:
        raise ValidationError(f"Unknown test type: {test_type!r}")


def get_definition(test_type) -> TestDefinition:
    return _DEFINITIONS[_coerce(test_type)]


def get_trials(test_type) -> Tuple[TrialDefinition, ...]:
    return get_definition(test_type).trials


def list_definitions() -> Tuple[TestDefinition, ...]:
    return tuple(_DEFINITIONS.values())


def public_stimulus(trial: TrialDefinition) -> Dict[str, Any]:
    """What a client may see of a trial: never the answer."""
    if isinstance(trial, PatternTrial):
        return {"pattern": list(trial.pattern), "options": list(trial.options)}
    if isinstance(trial, StroopTrial):
        return {"word": trial.word, "color": trial.color, "options": list(STROOP_COLORS)}
    return {"word": trial.word}


def describe(definition: TestDefinition) -> Dict[str, Any]:
    payload = {
        "test_type": definition.test_type.value,
        "name": definition.name,
        "total_trials": definition.total_trials,
        "trial_seconds": definition.trial_seconds,
        "feedback_seconds": definition.feedback_seconds,
        "trials": [public_stimulus(t) for t in definition.trials],
    }
    if definition.test_type is TestType.WORD_RECALL:
        payload["study_seconds"] = definition.study_seconds
        payload["delay_seconds"] = definition.delay_seconds
    return payload


def check_answer(trial: TrialDefinition, value) -> bool:
    """Whether ``value`` answers ``trial``; unparseable values are wrong."""
    if value is None:
        return False
    if isinstance(trial, PatternTrial):
        try:
            return int(value) == trial.correct_answer
        except (TypeError, ValueError):
            return False
    if isinstance(trial, StroopTrial):
        return str(value).strip().lower() == trial.correct_answer
    raise ValidationError("Study words are recalled, not answered")


def feedback_message(trial: TrialDefinition, correct: bool, timed_out: bool = False) -> str:
    if correct:
        return "Correct!"
    prefix = "Time's up!" if timed_out else "Incorrect."
    if isinstance(trial, PatternTrial):
        return f"{prefix} The answer was {trial.correct_answer}. Pattern: {trial.explanation}"
    if isinstance(trial, StroopTrial):
        return f"{prefix} The text color was {trial.correct_answer}."
    return prefix
