# services/evaluation_service.py
"""Re-score a session the client ran on its own.

Only raw responses are accepted. Correctness, response times, the score and
the risk are all derived here from the fixed trial definitions.

The stored-risk evaluation reads back the last three months of saved results
and blends them into one fresh assessment.
"""
import calendar
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models.cognitive_models import NormalizedResult, TestDefinition, TestType, TrialOutcome
from models.risk_models import RiskAssessment
from models.session_models import SessionSubmission
from models.user_model import UserProfile
from services.errors import ValidationError
from services.risk_service import compute_risk
from services.scoring_service import MAX_SCORE, build_recall_outcomes, round_half_up, score_and_normalize
from services.trial_service import check_answer, get_definition

logger = logging.getLogger(__name__)

# network and rendering slack on top of the trial countdown
LATE_RESPONSE_GRACE_SECONDS = 1.0


def _rebuild_recall(definition: TestDefinition, submission: SessionSubmission) -> List[TrialOutcome]:
    if submission.recall_words is None:
        raise ValidationError("recall_words is required for word recall")
    targets = [t.word for t in definition.trials]
    if len(submission.recall_words) > len(targets):
        raise ValidationError(
            f"At most {len(targets)} words can be recalled, got {len(submission.recall_words)}"
        )

    if submission.outcomes:
        if len(submission.outcomes) != len(targets):
            raise ValidationError(f"Expected {len(targets)} study presentations")
        ordered = sorted(submission.outcomes, key=lambda o: o.trial_index)
        presented = [o.presented_at for o in ordered]
    else:
        presented = [submission.started_at] * len(targets)

    return build_recall_outcomes(targets, presented, submission.recall_words, submission.ended_at)


def rebuild_outcomes(definition: TestDefinition, submission: SessionSubmission) -> List[TrialOutcome]:
    if definition.test_type is TestType.WORD_RECALL:
        return _rebuild_recall(definition, submission)

    total = definition.total_trials
    raw = sorted(submission.outcomes, key=lambda o: o.trial_index)
    if [o.trial_index for o in raw] != list(range(total)):
        raise ValidationError(f"Expected exactly one outcome for each of the {total} trials")

    outcomes = []
    for item in raw:
        trial = definition.trials[item.trial_index]
        responded_at = item.responded_at
        response_time = None
        if responded_at is not None:
            response_time = (responded_at - item.presented_at).total_seconds()
            if response_time < 0:
                raise ValidationError(f"Trial {item.trial_index} answered before it was shown")
            limit = definition.trial_seconds + LATE_RESPONSE_GRACE_SECONDS
            if definition.trial_seconds > 0 and response_time > limit:
                # answered after the countdown ran out: counts as a timeout
                responded_at = None
                response_time = None

        if responded_at is None:
            outcomes.append(TrialOutcome(
                trial_index=item.trial_index,
                presented_at=item.presented_at,
                is_correct=False,
            ))
        else:
            outcomes.append(TrialOutcome(
                trial_index=item.trial_index,
                presented_at=item.presented_at,
                responded_at=responded_at,
                selected_value=item.selected_value,
                is_correct=check_answer(trial, item.selected_value),
                response_time_seconds=response_time,
            ))
    return outcomes


def evaluate_submission(
    submission: SessionSubmission, profile: UserProfile
) -> Tuple[NormalizedResult, RiskAssessment]:
    if submission.ended_at < submission.started_at:
        raise ValidationError("Session ended before it started")

    definition = get_definition(submission.test_type)
    outcomes = rebuild_outcomes(definition, submission)
    _, result = score_and_normalize(
        definition.test_type, outcomes, submission.started_at, submission.ended_at
    )
    risk = compute_risk([result.score], profile, per_test={definition.test_type.value: result.score})
    logger.info(
        "Submission %s re-scored: %s %.2f, risk %s",
        submission.session_key, definition.test_type.value, result.score, risk.final_risk,
    )
    return result, risk


# ---------------- stored results ----------------

RISK_WINDOW_MONTHS = 3


def months_before(moment: datetime, months: int) -> datetime:
    """Same day and time ``months`` calendar months earlier, clamped to month end."""
    month_index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def evaluate_stored_risk(gateway, profile: UserProfile, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Risk over every test stored in the last three months, saved as a new evaluation."""
    now = now or datetime.now(timezone.utc)
    recent = gateway.results_since(profile.user_id, months_before(now, RISK_WINDOW_MONTHS))
    if not recent:
        raise ValidationError(f"No tests completed in the last {RISK_WINDOW_MONTHS} months")

    scores = [item["score"] * MAX_SCORE / item["max_score"] for item in recent]
    by_type: Dict[str, List[float]] = defaultdict(list)
    for item, score in zip(recent, scores):
        by_type[item["test_type"]].append(score)
    per_test = {test_type: round_half_up(sum(s) / len(s), 2) for test_type, s in by_type.items()}

    risk = compute_risk(scores, profile, per_test=per_test)
    saved = gateway.save_risk(profile.user_id, risk, now)
    logger.info(
        "Stored-risk evaluation for user %s over %d tests: %s/%s",
        profile.user_id, len(recent), risk.final_risk, risk.category.value,
    )

    percentages = [item["percentage"] for item in recent]
    return {
        "evaluation": saved,
        "risk_assessment": risk.model_dump(mode="json"),
        "cognitive_summary": {
            "total_tests": len(recent),
            "average_score": int(round_half_up(sum(percentages) / len(percentages))),
        },
    }
