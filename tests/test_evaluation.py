from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from models.cognitive_models import TestType
from models.session_models import RawTrialOutcome, SessionSubmission
from services.errors import ValidationError
from services.evaluation_service import (
    evaluate_stored_risk,
    evaluate_submission,
    months_before,
    rebuild_outcomes,
)
from services.trial_service import get_definition
from tests.conftest import T0

PATTERN = get_definition(TestType.PATTERN_RECOGNITION)


def pattern_submission(answers, delays=None, **kwargs):
    delays = delays or [4] * len(answers)
    outcomes = []
    for i, (answer, delay) in enumerate(zip(answers, delays)):
        presented = T0 + timedelta(seconds=20 * i)
        outcomes.append(RawTrialOutcome(
            trial_index=i,
            presented_at=presented,
            responded_at=None if answer is None else presented + timedelta(seconds=delay),
            selected_value=answer,
        ))
    fields = {
        "session_key": uuid4(),
        "test_type": TestType.PATTERN_RECOGNITION,
        "started_at": T0,
        "ended_at": T0 + timedelta(seconds=20 * len(answers)),
        "outcomes": outcomes,
    }
    fields.update(kwargs)
    return SessionSubmission(**fields)


def correct_answers():
    return [t.correct_answer for t in PATTERN.trials]


class TestRebuildOutcomes:
    def test_correctness_comes_from_trial_definitions(self):
        answers = correct_answers()[:6] + [-1, -1]
        outcomes = rebuild_outcomes(PATTERN, pattern_submission(answers))

        assert [o.is_correct for o in outcomes] == [True] * 6 + [False, False]
        assert all(o.response_time_seconds == 4.0 for o in outcomes)

    def test_unanswered_trial_is_a_timeout(self):
        answers = correct_answers()
        answers[3] = None
        outcomes = rebuild_outcomes(PATTERN, pattern_submission(answers))
        assert outcomes[3].timed_out
        assert not outcomes[3].is_correct

    def test_late_answer_is_a_timeout(self):
        delays = [4] * 8
        delays[0] = 17
        delays[1] = 16
        outcomes = rebuild_outcomes(PATTERN, pattern_submission(correct_answers(), delays))

        assert outcomes[0].timed_out
        assert not outcomes[0].is_correct
        assert outcomes[1].is_correct

    def test_every_trial_needs_exactly_one_outcome(self):
        submission = pattern_submission(correct_answers()[:7])
        with pytest.raises(ValidationError):
            rebuild_outcomes(PATTERN, submission)

        duplicated = pattern_submission(correct_answers())
        duplicated.outcomes[7] = duplicated.outcomes[6]
        with pytest.raises(ValidationError):
            rebuild_outcomes(PATTERN, duplicated)

    def test_answer_before_presentation_rejected(self):
        delays = [4] * 8
        delays[2] = -1
        with pytest.raises(ValidationError):
            rebuild_outcomes(PATTERN, pattern_submission(correct_answers(), delays))


class TestEvaluateSubmission:
    def test_pattern_submission(self, profile):
        answers = correct_answers()[:6] + [-1, -1]
        result, risk = evaluate_submission(pattern_submission(answers), profile)

        assert result.test_type is TestType.PATTERN_RECOGNITION
        assert result.score == 7.5
        assert result.percentage == 75
        assert result.time_taken_seconds == 160
        assert risk.test_risk == 25
        assert risk.final_risk == 24

    def test_ended_before_started(self, profile):
        submission = pattern_submission(correct_answers(), ended_at=T0 - timedelta(seconds=1))
        with pytest.raises(ValidationError):
            evaluate_submission(submission, profile)

    def test_naive_timestamps_taken_as_utc(self):
        submission = pattern_submission(
            correct_answers(),
            started_at=T0.replace(tzinfo=None),
            ended_at=(T0 + timedelta(seconds=160)).replace(tzinfo=None),
        )
        assert submission.started_at == T0

    def test_word_recall_submission(self, profile):
        submission = SessionSubmission(
            session_key=uuid4(),
            test_type=TestType.WORD_RECALL,
            started_at=T0,
            ended_at=T0 + timedelta(seconds=75),
            recall_words=["Apple", "river", "garden ", "stars"],
        )
        result, risk = evaluate_submission(submission, profile)

        assert result.score == 4.0
        assert result.metadata["correct_responses"] == 4
        assert risk.test_risk == 60

    def test_word_recall_requires_words(self, profile):
        submission = SessionSubmission(
            session_key=uuid4(),
            test_type=TestType.WORD_RECALL,
            started_at=T0,
            ended_at=T0 + timedelta(seconds=75),
        )
        with pytest.raises(ValidationError):
            evaluate_submission(submission, profile)

    def test_word_recall_rejects_more_words_than_targets(self, profile):
        submission = SessionSubmission(
            session_key=uuid4(),
            test_type=TestType.WORD_RECALL,
            started_at=T0,
            ended_at=T0 + timedelta(seconds=75),
            recall_words=list("abcdefghijklmnopqrstuvwxyz"),
        )
        with pytest.raises(ValidationError):
            evaluate_submission(submission, profile)


class TestMonthsBefore:
    def test_same_day_earlier_month(self):
        assert months_before(T0, 3) == datetime(2025, 10, 5, 10, 0, tzinfo=timezone.utc)

    def test_clamped_to_month_end(self):
        moment = datetime(2026, 5, 31, 8, 30, tzinfo=timezone.utc)
        assert months_before(moment, 3) == datetime(2026, 2, 28, 8, 30, tzinfo=timezone.utc)


class TestEvaluateStoredRisk:
    def stored(self, test_type, score, percentage):
        return {"id": "r", "test_type": test_type, "score": score, "max_score": 10, "percentage": percentage}

    def test_recent_tests_are_blended(self, gateway, profile):
        gateway.results_since.return_value = [
            self.stored("stroop", 6.5, 65),
            self.stored("pattern_recognition", 7.5, 75),
            self.stored("stroop", 7.0, 70),
        ]

        outcome = evaluate_stored_risk(gateway, profile, now=T0)

        gateway.results_since.assert_called_once_with(
            profile.user_id, datetime(2025, 10, 5, 10, 0, tzinfo=timezone.utc)
        )
        risk = outcome["risk_assessment"]
        assert risk["avg_test_score"] == 7.0
        assert risk["test_risk"] == 30
        assert risk["final_risk"] == 27
        assert risk["category"] == "Moderate"
        assert risk["per_test"] == {"stroop": 6.75, "pattern_recognition": 7.5}
        assert outcome["cognitive_summary"] == {"total_tests": 3, "average_score": 70}
        assert outcome["evaluation"] == gateway.save_risk.return_value

        saved_risk = gateway.save_risk.call_args[0][1]
        assert gateway.save_risk.call_args[0][2] == T0
        assert saved_risk.final_risk == 27

    def test_no_recent_tests(self, gateway, profile):
        gateway.results_since.return_value = []
        with pytest.raises(ValidationError):
            evaluate_stored_risk(gateway, profile, now=T0)
        gateway.save_risk.assert_not_called()
