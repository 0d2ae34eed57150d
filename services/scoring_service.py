# services/scoring_service.py
"""Turn raw trial outcomes into a normalized 0-10 score.

Every scorer returns a ``CompletionEvent``; an empty outcome sequence yields
``final_score=None`` so the caller can show a degraded result instead of
inventing a zero.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from models.cognitive_models import (
    CompletionEvent,
    NormalizedResult,
    PerformanceLevel,
    TestType,
    TrialOutcome,
)
from services.errors import DegradedResultError, ValidationError

MAX_SCORE = 10

# Stroop response-time penalty
STROOP_RT_THRESHOLD_SECONDS = 2.0
STROOP_PENALTY_PER_SECOND = 10.0
STROOP_MAX_PENALTY = 20.0


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value, digits: int = 0) -> float:
    """Round half away from zero; floats are read through their repr first."""
    quantum = Decimal(1).scaleb(-digits)
    return float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def _ratio_score(correct: int, total: int) -> float:
    # exact decimal ratio, rounded once
    return round_half_up(Decimal(correct) * MAX_SCORE / Decimal(total), 2)


def clamp(value, min_value=0.0, max_value=100.0):
    return max(min_value, min(value, max_value))


def performance_level(score: float) -> PerformanceLevel:
    if score < 4:
        return PerformanceLevel.LOW
    if score <= 7:
        return PerformanceLevel.MODERATE
    return PerformanceLevel.HIGH


def _response_times(outcomes: Iterable[TrialOutcome]) -> List[float]:
    # timeouts have no response time and are left out
    return [
        o.response_time_seconds
        for o in outcomes
        if not o.timed_out and o.response_time_seconds is not None
    ]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _correct_count(outcomes: Iterable[TrialOutcome]) -> int:
    return len({o.trial_index for o in outcomes if o.is_correct})


# ---------------- PATTERN RECOGNITION ----------------

def score_pattern_recognition(outcomes: Sequence[TrialOutcome]) -> CompletionEvent:
    total = len(outcomes)
    if total == 0:
        return CompletionEvent(final_score=None, metadata={"total_trials": 0})

    correct = _correct_count(outcomes)
    times = _response_times(outcomes)
    return CompletionEvent(
        final_score=_ratio_score(correct, total),
        metadata={
            "total_trials": total,
            "correct_responses": correct,
            "timeouts": sum(1 for o in outcomes if o.timed_out),
            "avg_response_time_seconds": round(_mean(times), 3),
            "response_times": times,
        },
    )


# ---------------- STROOP ----------------

def _stroop_penalty(avg_response_time) -> Decimal:
    avg = to_decimal(avg_response_time)
    threshold = to_decimal(STROOP_RT_THRESHOLD_SECONDS)
    if avg <= threshold:
        return Decimal(0)
    return min(
        to_decimal(STROOP_MAX_PENALTY),
        (avg - threshold) * to_decimal(STROOP_PENALTY_PER_SECOND),
    )


def stroop_penalty(avg_response_time: float) -> float:
    return float(_stroop_penalty(avg_response_time))


def score_stroop(outcomes: Sequence[TrialOutcome]) -> CompletionEvent:
    total = len(outcomes)
    if total == 0:
        return CompletionEvent(final_score=None, metadata={"total_trials": 0})

    correct = _correct_count(outcomes)
    times = _response_times(outcomes)
    avg_rt = _mean(times)

    base_percent = Decimal(correct) * 100 / Decimal(total)
    penalty = _stroop_penalty(avg_rt)
    final_percent = clamp(base_percent - penalty, Decimal(0), Decimal(100))

    return CompletionEvent(
        final_score=round_half_up(final_percent * MAX_SCORE / 100, 2),
        metadata={
            "total_trials": total,
            "correct_responses": correct,
            "timeouts": sum(1 for o in outcomes if o.timed_out),
            "avg_response_time_seconds": round(avg_rt, 3),
            "response_times": times,
            "base_percent": round_half_up(base_percent, 2),
            "penalty_percent": round_half_up(penalty, 2),
            "final_percent": round_half_up(final_percent, 2),
        },
    )


# ---------------- WORD RECALL ----------------

def word_matches(target: str, candidate: str) -> bool:
    """Lenient recall match: equality, containment, or a shared 3-letter prefix."""
    t = target.strip().lower()
    c = candidate.strip().lower()
    if not t or not c:
        return False
    if c == t or c in t or t in c:
        return True
    return len(c) > 3 and len(t) > 3 and c[:3] == t[:3]


def match_recalled_words(targets: Sequence[str], inputs: Sequence[str]) -> Dict[str, str]:
    """Map each recalled target word to the first input that matched it.

    A target appears at most once no matter how many inputs match it.
    """
    matched: Dict[str, str] = {}
    for target in targets:
        for candidate in inputs:
            if word_matches(target, candidate):
                matched[target] = candidate.strip()
                break
    return matched


def build_recall_outcomes(
    targets: Sequence[str],
    presented_at: Sequence[datetime],
    inputs: Sequence[str],
    responded_at: datetime,
) -> List[TrialOutcome]:
    if len(presented_at) != len(targets):
        raise ValidationError("Every study word needs a presentation time")
    matched = match_recalled_words(targets, inputs)
    return [
        TrialOutcome(
            trial_index=i,
            presented_at=presented_at[i],
            responded_at=responded_at,
            selected_value=matched.get(word),
            is_correct=word in matched,
        )
        for i, word in enumerate(targets)
    ]


def score_word_recall(outcomes: Sequence[TrialOutcome]) -> CompletionEvent:
    total = len(outcomes)
    if total == 0:
        return CompletionEvent(final_score=None, metadata={"total_trials": 0})

    correct = _correct_count(outcomes)
    return CompletionEvent(
        final_score=_ratio_score(correct, total),
        metadata={
            "total_trials": total,
            "correct_responses": correct,
            "recalled_words": [o.selected_value for o in outcomes if o.is_correct],
            "avg_response_time_seconds": None,
            "response_times": [],
        },
    )


SCORERS: Dict[TestType, Callable[[Sequence[TrialOutcome]], CompletionEvent]] = {
    TestType.PATTERN_RECOGNITION: score_pattern_recognition,
    TestType.STROOP: score_stroop,
    TestType.WORD_RECALL: score_word_recall,
}


def score_session(test_type: TestType, outcomes: Sequence[TrialOutcome]) -> CompletionEvent:
    return SCORERS[TestType(test_type)](list(outcomes))


def time_taken_seconds(started_at: Optional[datetime], ended_at: datetime) -> Optional[int]:
    if started_at is None:
        return None
    return int(round_half_up(max(0.0, (ended_at - started_at).total_seconds())))


def percentage_of(score: float, max_score: int = MAX_SCORE) -> int:
    return int(round_half_up(to_decimal(score) * 100 / to_decimal(max_score)))


def build_normalized_result(
    test_type: TestType,
    event: CompletionEvent,
    started_at: Optional[datetime],
    ended_at: datetime,
) -> NormalizedResult:
    if event.final_score is None:
        raise DegradedResultError(f"{TestType(test_type).value} finished without a score")
    if not 0 <= event.final_score <= MAX_SCORE:
        raise ValidationError(f"Score {event.final_score} outside [0, {MAX_SCORE}]")

    score = round_half_up(event.final_score, 2)
    elapsed = time_taken_seconds(started_at, ended_at)
    metadata = dict(event.metadata)
    metadata["time_taken_seconds"] = elapsed

    return NormalizedResult(
        test_type=test_type,
        score=score,
        max_score=MAX_SCORE,
        percentage=percentage_of(score),
        performance_level=performance_level(score),
        time_taken_seconds=elapsed,
        completed_at=ended_at,
        metadata=metadata,
    )


def score_and_normalize(
    test_type: TestType,
    outcomes: Sequence[TrialOutcome],
    started_at: Optional[datetime],
    ended_at: datetime,
) -> Tuple[CompletionEvent, NormalizedResult]:
    event = score_session(test_type, outcomes)
    return event, build_normalized_result(test_type, event, started_at, ended_at)
