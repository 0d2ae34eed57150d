# services/results_service.py
"""MongoDB store for test results and risk evaluations.

``ResultsGateway`` is handed to live sessions instead of a module-level
handle. Writes carrying a ``session_key`` are idempotent: saving the same
attempt twice returns the first stored record.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from models.cognitive_models import NormalizedResult, TestType
from models.risk_models import RiskAssessment
from services.db_service import COGNITIVE_TESTS, RISK_EVALUATIONS, TEST_SCHEDULES, to_object_id
from services.errors import NotFoundError, PersistenceError, ValidationError
from services.scoring_service import MAX_SCORE, percentage_of

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
RECENT_TESTS_ON_DASHBOARD = 5


def performance_feedback(percentage: float) -> Dict[str, str]:
    if percentage >= 90:
        return {"level": "Excellent", "message": "Outstanding cognitive performance!", "color": "success"}
    if percentage >= 80:
        return {"level": "Great", "message": "Strong cognitive abilities demonstrated.", "color": "success"}
    if percentage >= 70:
        return {"level": "Good", "message": "Above average performance.", "color": "warning"}
    if percentage >= 60:
        return {"level": "Fair", "message": "Average performance with room for improvement.", "color": "warning"}
    if percentage >= 50:
        return {"level": "Below Average", "message": "Below average performance. Consider retaking.", "color": "danger"}
    return {"level": "Poor", "message": "Poor performance. Please retake the test.", "color": "danger"}


def next_steps(percentage: float) -> List[str]:
    if percentage >= 80:
        return ["Continue regular testing", "Maintain healthy lifestyle", "Consider advanced tests"]
    if percentage >= 60:
        return ["Practice similar tests", "Focus on weak areas", "Retake in 1-2 weeks"]
    return ["Retake the test", "Consult healthcare provider", "Focus on cognitive exercises"]


def _clamp_limit(limit, default: int = 10) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default
    return max(1, min(MAX_LIST_LIMIT, limit))


def serialize_result(doc: Dict[str, Any]) -> Dict[str, Any]:
    test_data = doc.get("test_data") or {}
    max_score = doc.get("max_score") or MAX_SCORE
    return {
        "id": str(doc["_id"]),
        "test_type": doc["test_type"],
        "score": doc["score"],
        "max_score": max_score,
        "percentage": percentage_of(doc["score"], max_score),
        "performance_level": test_data.get("performance_level"),
        "time_taken": doc.get("time_taken"),
        "completed_at": doc.get("completed_at"),
        "metadata": test_data.get("metadata"),
    }


def serialize_risk(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "risk_score": doc["risk_score"],
        "risk_category": doc["risk_category"],
        "factors": doc.get("factors", []),
        "recommendations": doc.get("recommendations", []),
        "contributing_factors": doc.get("contributing_factors"),
        "evaluated_at": doc.get("evaluated_at"),
    }


class ResultsGateway:
    def __init__(self, db):
        self.db = db

    @property
    def tests(self):
        return self.db[COGNITIVE_TESTS]

    @property
    def risks(self):
        return self.db[RISK_EVALUATIONS]

    # ---------------- writes ----------------

    def _insert(self, collection, doc: Dict[str, Any], what: str) -> Dict[str, Any]:
        try:
            inserted = collection.insert_one(doc)
        except DuplicateKeyError:
            existing = collection.find_one({"session_key": doc.get("session_key"), "user_id": doc["user_id"]})
            if existing is None:
                raise PersistenceError(f"Duplicate {what} belongs to another user")
            logger.info("Duplicate %s for session %s ignored", what, doc.get("session_key"))
            return existing
        except PyMongoError as e:
            logger.error("Saving %s failed: %s", what, e)
            raise PersistenceError(f"Failed to save {what}: {e}") from e
        doc["_id"] = inserted.inserted_id
        return doc

    def save_result(self, user_id, result: NormalizedResult, session_key=None) -> Dict[str, Any]:
        if result is None or not getattr(result, "test_type", None):
            raise ValidationError("test type is required")
        try:
            test_type = TestType(result.test_type)
        except ValueError:
            raise ValidationError(f"Unknown test type: {result.test_type!r}")
        score = getattr(result, "score", None)
        if score is None or not 0 <= score <= MAX_SCORE:
            raise ValidationError(f"Score must be within [0, {MAX_SCORE}]")

        doc = {
            "user_id": to_object_id(user_id),
            "test_type": test_type.value,
            "score": score,
            "max_score": MAX_SCORE,
            "time_taken": result.time_taken_seconds,
            "test_data": {
                "performance_level": result.performance_level.value,
                "metadata": result.metadata or None,
            },
            "completed_at": result.completed_at or datetime.now(timezone.utc),
        }
        if session_key is not None:
            doc["session_key"] = str(session_key)

        return serialize_result(self._insert(self.tests, doc, "test result"))

    def save_risk(self, user_id, risk: RiskAssessment, evaluated_at: Optional[datetime] = None,
                  session_key=None) -> Dict[str, Any]:
        if risk is None or getattr(risk, "final_risk", None) is None:
            raise ValidationError("risk score is required")
        if getattr(risk, "category", None) is None:
            raise ValidationError("risk category is required")

        doc = {
            "user_id": to_object_id(user_id),
            "risk_score": risk.final_risk,
            "risk_category": risk.category.value,
            "factors": list(risk.factors),
            "recommendations": list(risk.recommendations),
            "contributing_factors": {
                "test_risk": risk.test_risk,
                "demo_risk": risk.demo_risk,
                "weights": risk.weights.model_dump(),
                "avg_test_score": risk.avg_test_score,
                "per_test": dict(risk.per_test),
            },
            "evaluated_at": evaluated_at or datetime.now(timezone.utc),
        }
        if session_key is not None:
            doc["session_key"] = str(session_key)

        return serialize_risk(self._insert(self.risks, doc, "risk evaluation"))

    # ---------------- reads ----------------

    def list_recent_results(self, user_id, limit=10) -> List[Dict[str, Any]]:
        try:
            docs = (
                self.tests.find({"user_id": to_object_id(user_id)})
                .sort("completed_at", DESCENDING)
                .limit(_clamp_limit(limit))
            )
            return [serialize_result(doc) for doc in docs]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load results: {e}") from e

    def test_history(self, user_id, limit=50, offset=0, test_type=None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"user_id": to_object_id(user_id)}
        if test_type:
            try:
                query["test_type"] = TestType(test_type).value
            except ValueError:
                raise ValidationError(f"Unknown test type: {test_type!r}")
        try:
            docs = (
                self.tests.find(query)
                .sort("completed_at", DESCENDING)
                .skip(max(0, int(offset)))
                .limit(_clamp_limit(limit, default=50))
            )
            history = []
            for doc in docs:
                item = serialize_result(doc)
                item["score_percentage"] = doc["score"] / (doc.get("max_score") or MAX_SCORE) * 100
                history.append(item)
            return history
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load test history: {e}") from e

    def results_since(self, user_id, since: datetime) -> List[Dict[str, Any]]:
        """Every stored result completed at or after ``since``, newest first."""
        try:
            docs = self.tests.find(
                {"user_id": to_object_id(user_id), "completed_at": {"$gte": since}}
            ).sort("completed_at", DESCENDING)
            return [serialize_result(doc) for doc in docs]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load recent results: {e}") from e

    def get_result(self, user_id, result_id) -> Dict[str, Any]:
        try:
            doc = self.tests.find_one({"_id": to_object_id(result_id), "user_id": to_object_id(user_id)})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load test result: {e}") from e
        if not doc:
            raise NotFoundError("Test result not found")

        item = serialize_result(doc)
        item["test_data"] = doc.get("test_data")
        item["performance_feedback"] = performance_feedback(item["percentage"])
        item["next_steps"] = next_steps(item["percentage"])
        return item

    def latest_risk(self, user_id) -> Optional[Dict[str, Any]]:
        try:
            doc = self.risks.find_one(
                {"user_id": to_object_id(user_id)},
                sort=[("evaluated_at", DESCENDING)],
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load risk evaluation: {e}") from e
        return serialize_risk(doc) if doc else None

    def test_summary(self, user_id) -> Dict[str, Any]:
        pipeline = [
            {"$match": {"user_id": to_object_id(user_id)}},
            {"$group": {
                "_id": None,
                "total_tests": {"$sum": 1},
                "average_percentage": {"$avg": {"$multiply": [{"$divide": ["$score", "$max_score"]}, 100]}},
                "first_test": {"$min": "$completed_at"},
                "last_test": {"$max": "$completed_at"},
            }},
        ]
        try:
            stats = list(self.tests.aggregate(pipeline))
        except PyMongoError as e:
            raise PersistenceError(f"Failed to aggregate test results: {e}") from e

        row = stats[0] if stats else {}
        return {
            "total_tests": row.get("total_tests") or 0,
            "average_performance": percentage_of(row.get("average_percentage") or 0, 100),
            "first_test_date": row.get("first_test"),
            "last_test_date": row.get("last_test"),
        }

    def next_scheduled_test(self, user_id) -> Optional[Dict[str, Any]]:
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            doc = self.db[TEST_SCHEDULES].find_one(
                {"user_id": to_object_id(user_id), "status": "scheduled", "scheduled_date": {"$gte": today}},
                sort=[("scheduled_date", 1)],
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load schedule: {e}") from e
        if not doc:
            return None
        return {"id": str(doc["_id"]), "test_type": doc["test_type"], "scheduled_date": doc["scheduled_date"]}

    def dashboard(self, user_doc: Dict[str, Any]) -> Dict[str, Any]:
        user_id = user_doc["_id"]
        recent = self.list_recent_results(user_id, limit=RECENT_TESTS_ON_DASHBOARD)
        latest_risk = self.latest_risk(user_id)

        return {
            "user_profile": {
                "name": f"{user_doc.get('first_name', '')} {user_doc.get('last_name', '')}".strip(),
                "age": user_doc.get("age"),
                "gender": user_doc.get("gender"),
            },
            "risk_assessment": {
                "category": latest_risk["risk_category"],
                "score": latest_risk["risk_score"],
                "date": latest_risk["evaluated_at"],
            } if latest_risk else None,
            "test_summary": self.test_summary(user_id),
            "recent_tests": [
                {
                    "test_type": r["test_type"],
                    "percentage": r["percentage"],
                    "performance_level": r["performance_level"],
                    "completed_at": r["completed_at"],
                }
                for r in recent
            ],
            "next_scheduled_test": self.next_scheduled_test(user_id),
            "last_updated": datetime.now(timezone.utc),
        }
