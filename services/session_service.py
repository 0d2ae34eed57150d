# services/session_service.py
"""Live test sessions: instructions -> running -> results.

A ``TestSession`` drives one attempt at a test. Trial countdowns and feedback
delays are cooperative ``Countdown`` tasks on the running event loop. Each
trial ends exactly once, either by a response or by its countdown expiring;
the input flag, countdown cancellation and the generation counter together
stop a late callback from touching a trial, or a session, that has moved on.

Scoring and risk are computed here, on the server, from the recorded
outcomes. Nothing the client reports as a score is used.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from models.cognitive_models import (
    CompletionEvent,
    NormalizedResult,
    RecallPhase,
    SessionPhase,
    TestDefinition,
    TestType,
    TrialOutcome,
)
from models.risk_models import RiskAssessment
from models.user_model import UserProfile
from services.errors import (
    DegradedResultError,
    NotFoundError,
    PersistenceError,
    SessionStateError,
    ValidationError,
)
from services.notification_service import LoggingNotifier, Notifier
from services.risk_service import compute_risk
from services.scoring_service import build_normalized_result, build_recall_outcomes, score_session
from services.timer_service import Countdown, SleepFn
from services.trial_service import check_answer, feedback_message, get_definition, public_stimulus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Scorer = Callable[[TestType, Sequence[TrialOutcome]], CompletionEvent]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestSession:
    def __init__(
        self,
        definition: TestDefinition,
        user_id: str,
        profile: UserProfile,
        gateway,
        notifier: Optional[Notifier] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = utcnow,
        scorer: Scorer = score_session,
    ):
        self.id = uuid4().hex
        self.definition = definition
        self.user_id = user_id
        self.profile = profile
        self._gateway = gateway
        self._notifier = notifier or LoggingNotifier()
        self._sleep = sleep
        self._clock = clock
        self._scorer = scorer
        self._generation = 0
        self._reset()

    # ---------------- state ----------------

    def _reset(self) -> None:
        self._generation += 1
        self.phase = SessionPhase.INSTRUCTIONS
        self.recall_phase: Optional[RecallPhase] = None
        self.session_key: Optional[UUID] = None
        self.outcomes: List[TrialOutcome] = []
        self.started_at: Optional[datetime] = None
        self.ended_at: Optional[datetime] = None
        self.current_index = 0
        self.presented_at: Optional[datetime] = None
        self._study_presented: List[datetime] = []
        self.accepting_input = False
        self.feedback: Optional[Dict[str, Any]] = None
        self.result: Optional[NormalizedResult] = None
        self.risk: Optional[RiskAssessment] = None
        self.degraded = False
        self.saved: Optional[Dict[str, Any]] = None
        self.save_error: Optional[str] = None
        self._saving = False
        self.closed = False
        self._countdown: Optional[Countdown] = None

    @property
    def test_type(self) -> TestType:
        return self.definition.test_type

    @property
    def is_word_recall(self) -> bool:
        return self.test_type is TestType.WORD_RECALL

    @property
    def saving(self) -> bool:
        return self._saving

    def _require_phase(self, phase: SessionPhase, action: str) -> None:
        if self.closed:
            raise SessionStateError(f"Cannot {action}: session is closed")
        if self.phase is not phase:
            raise SessionStateError(f"Cannot {action} during the {self.phase.value} phase")

    # ---------------- timers ----------------

    def _guard(self, fn: Callable, *args) -> Callable[[], None]:
        generation = self._generation

        def callback() -> None:
            if generation != self._generation or self.closed:
                return
            fn(*args)

        return callback

    def _cancel_timer(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _schedule(self, seconds: int, on_expire: Callable[[], None], name: str) -> None:
        self._cancel_timer()
        if seconds <= 0:
            on_expire()
            return
        self._countdown = Countdown(seconds, on_expire, sleep=self._sleep, name=name).start()

    def _countdown_remaining(self) -> Optional[int]:
        if self._countdown is None or self._countdown.cancelled or self._countdown.expired:
            return None
        return self._countdown.seconds_remaining

    @property
    def seconds_remaining(self) -> Optional[int]:
        """Time left to answer; None once the trial has ended."""
        if self.feedback is not None:
            return None
        return self._countdown_remaining()

    @property
    def feedback_seconds_remaining(self) -> Optional[int]:
        if self.feedback is None:
            return None
        return self._countdown_remaining()

    # ---------------- transitions ----------------

    def start(self) -> None:
        self._require_phase(SessionPhase.INSTRUCTIONS, "start")
        self.phase = SessionPhase.RUNNING
        self.started_at = self._clock()
        self.session_key = uuid4()
        logger.info("Session %s (%s) started for user %s", self.id, self.test_type.value, self.user_id)

        if self.definition.total_trials == 0:
            self._complete()
        elif self.is_word_recall:
            self._present_study_word(0)
        else:
            self._present_trial(0)

    def _present_trial(self, index: int) -> None:
        self.current_index = index
        self.presented_at = self._clock()
        self.feedback = None
        self.accepting_input = True
        if self.definition.trial_seconds > 0:
            self._schedule(
                self.definition.trial_seconds,
                self._guard(self._on_trial_timeout, index),
                name=f"{self.id}-trial-{index}",
            )

    def _record(self, index: int, value, correct: bool, responded_at: Optional[datetime]) -> TrialOutcome:
        response_time = None
        if responded_at is not None and self.presented_at is not None:
            response_time = max(0.0, (responded_at - self.presented_at).total_seconds())
        outcome = TrialOutcome(
            trial_index=index,
            presented_at=self.presented_at,
            responded_at=responded_at,
            selected_value=value,
            is_correct=correct,
            response_time_seconds=response_time,
        )
        self.accepting_input = False
        self.outcomes.append(outcome)
        return outcome

    def respond(self, trial_index: int, value) -> TrialOutcome:
        self._require_phase(SessionPhase.RUNNING, "respond")
        if self.is_word_recall:
            raise SessionStateError("Word recall answers are submitted in the recall phase")
        if not self.accepting_input:
            raise SessionStateError("Input is disabled while feedback is shown")
        if trial_index != self.current_index:
            raise SessionStateError(f"Trial {trial_index} is not the current trial ({self.current_index})")

        self._cancel_timer()
        trial = self.definition.trials[trial_index]
        correct = check_answer(trial, value)
        outcome = self._record(trial_index, value, correct, self._clock())
        self._show_feedback(trial_index, correct)
        return outcome

    def _on_trial_timeout(self, index: int) -> None:
        if self.phase is not SessionPhase.RUNNING or index != self.current_index or not self.accepting_input:
            return
        self._countdown = None
        # a timeout is an ordinary wrong answer
        self._record(index, None, False, None)
        self._show_feedback(index, False, timed_out=True)

    def _show_feedback(self, index: int, correct: bool, timed_out: bool = False) -> None:
        trial = self.definition.trials[index]
        self.feedback = {
            "trial_index": index,
            "correct": correct,
            "timed_out": timed_out,
            "message": feedback_message(trial, correct, timed_out),
        }
        self._schedule(
            self.definition.feedback_seconds,
            self._guard(self._advance, index),
            name=f"{self.id}-feedback-{index}",
        )

    def _advance(self, index: int) -> None:
        if self.phase is not SessionPhase.RUNNING or index != self.current_index:
            return
        if index + 1 < self.definition.total_trials:
            self._present_trial(index + 1)
        else:
            self._complete()

    # word recall: study -> delay -> recall

    def _present_study_word(self, index: int) -> None:
        self.recall_phase = RecallPhase.STUDY
        self.current_index = index
        self.presented_at = self._clock()
        self._study_presented.append(self.presented_at)
        self._schedule(
            self.definition.study_seconds,
            self._guard(self._after_study_word, index),
            name=f"{self.id}-study-{index}",
        )

    def _after_study_word(self, index: int) -> None:
        if index + 1 < self.definition.total_trials:
            self._present_study_word(index + 1)
        else:
            self.recall_phase = RecallPhase.DELAY
            self.presented_at = None
            self._schedule(
                self.definition.delay_seconds,
                self._guard(self._open_recall),
                name=f"{self.id}-delay",
            )

    def _open_recall(self) -> None:
        self._countdown = None
        self.recall_phase = RecallPhase.RECALL
        self.accepting_input = True

    def submit_recall(self, words: Sequence[str]) -> List[TrialOutcome]:
        self._require_phase(SessionPhase.RUNNING, "submit recall")
        if not self.is_word_recall or self.recall_phase is not RecallPhase.RECALL:
            raise SessionStateError("Recall is not open")
        if not self.accepting_input:
            raise SessionStateError("Recall already submitted")

        if len(words) > self.definition.total_trials:
            raise ValidationError(
                f"At most {self.definition.total_trials} words can be recalled, got {len(words)}"
            )

        self.accepting_input = False
        targets = [t.word for t in self.definition.trials]
        self.outcomes = build_recall_outcomes(targets, self._study_presented, list(words), self._clock())
        self._complete()
        return self.outcomes

    def _complete(self) -> None:
        self._cancel_timer()
        self.accepting_input = False
        self.ended_at = self._clock()
        event = self._scorer(self.test_type, self.outcomes)

        try:
            self.result = build_normalized_result(self.test_type, event, self.started_at, self.ended_at)
        except (DegradedResultError, ValidationError) as exc:
            logger.warning("Session %s finished without a score: %s", self.id, exc)
            self.degraded = True
            self.result = None
            self.risk = None
        else:
            self.risk = compute_risk(
                [self.result.score],
                self.profile,
                per_test={self.test_type.value: self.result.score},
            )
            logger.info(
                "Session %s scored %.2f (%s), risk %s/%s",
                self.id, self.result.score, self.result.performance_level.value,
                self.risk.final_risk, self.risk.category.value,
            )

        self.phase = SessionPhase.RESULTS
        self.recall_phase = None
        self.feedback = None

    def quit(self, confirmed: bool) -> None:
        self._require_phase(SessionPhase.RUNNING, "quit")
        if not confirmed:
            raise SessionStateError("Quitting needs confirmation; unsaved progress will be lost")
        logger.info("Session %s quit by user %s", self.id, self.user_id)
        self.close()

    def retake(self) -> None:
        self._require_phase(SessionPhase.RESULTS, "retake")
        if self._saving:
            raise SessionStateError("Cannot retake while results are being saved")
        self._cancel_timer()
        self._reset()

    def discard(self) -> None:
        self._require_phase(SessionPhase.RESULTS, "discard")
        if self._saving:
            raise SessionStateError("Cannot discard while results are being saved")
        self.close()

    def close(self) -> None:
        self._cancel_timer()
        self._generation += 1
        self.accepting_input = False
        self.closed = True

    async def save(self) -> Dict[str, Any]:
        self._require_phase(SessionPhase.RESULTS, "save")
        if self.degraded or self.result is None:
            raise DegradedResultError("Results unavailable; there is nothing to save")
        if self._saving:
            raise SessionStateError("Save already in progress")

        self._saving = True
        try:
            record = await asyncio.to_thread(
                self._gateway.save_result, self.user_id, self.result, self.session_key
            )
            risk_record = None
            if self.risk is not None:
                risk_record = await asyncio.to_thread(
                    self._gateway.save_risk, self.user_id, self.risk, self.ended_at, self.session_key
                )
        except PersistenceError as exc:
            # result and risk stay in memory so the user can retry
            self.save_error = str(exc)
            self._notifier.save_failed(self.user_id, exc)
            raise
        finally:
            self._saving = False

        self.save_error = None
        self.saved = {"result": record, "risk": risk_record}
        self._notifier.test_saved(self.user_id, record)
        self.close()
        return self.saved

    # ---------------- views ----------------

    def _stimulus(self) -> Optional[Dict[str, Any]]:
        if self.phase is not SessionPhase.RUNNING:
            return None
        if self.is_word_recall:
            if self.recall_phase is RecallPhase.STUDY:
                return public_stimulus(self.definition.trials[self.current_index])
            return None
        return public_stimulus(self.definition.trials[self.current_index])

    def snapshot(self) -> Dict[str, Any]:
        running = self.phase is SessionPhase.RUNNING
        return {
            "session_id": self.id,
            "test_type": self.test_type.value,
            "name": self.definition.name,
            "phase": self.phase.value,
            "recall_phase": self.recall_phase.value if self.recall_phase else None,
            "total_trials": self.definition.total_trials,
            "trials_completed": len(self.outcomes),
            "current_trial_index": self.current_index if running else None,
            "stimulus": self._stimulus(),
            "seconds_remaining": self.seconds_remaining if running else None,
            "feedback_seconds_remaining": self.feedback_seconds_remaining if running else None,
            "accepting_input": self.accepting_input,
            "feedback": self.feedback,
            "session_key": str(self.session_key) if self.session_key else None,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "degraded": self.degraded,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "risk": self.risk.model_dump(mode="json") if self.risk else None,
            "saving": self._saving,
            "save_error": self.save_error,
            "saved": self.saved,
            "closed": self.closed,
        }


class SessionRegistry:
    """Live sessions held in process memory, one per user."""

    def __init__(
        self,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = utcnow,
        notifier: Optional[Notifier] = None,
        definitions: Optional[Dict[TestType, TestDefinition]] = None,
    ):
        self._sleep = sleep
        self._clock = clock
        self._notifier = notifier or LoggingNotifier()
        self._definitions = dict(definitions or {})
        self._sessions: Dict[str, TestSession] = {}
        self._by_user: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def definition_for(self, test_type) -> TestDefinition:
        definition = get_definition(test_type)
        return self._definitions.get(definition.test_type, definition)

    def create(self, user_id: str, test_type, profile: UserProfile, gateway) -> TestSession:
        previous = self._by_user.get(user_id)
        if previous is not None:
            logger.info("Replacing live session %s for user %s", previous, user_id)
            self.remove(previous)

        session = TestSession(
            self.definition_for(test_type),
            user_id,
            profile,
            gateway,
            notifier=self._notifier,
            sleep=self._sleep,
            clock=self._clock,
        )
        self._sessions[session.id] = session
        self._by_user[user_id] = session.id
        return session

    def get(self, session_id: str, user_id: str) -> TestSession:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session not found")
        return session

    def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if self._by_user.get(session.user_id) == session_id:
            del self._by_user[session.user_id]
        if not session.closed:
            session.close()

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)
