import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

from main import app
from models.cognitive_models import TestType
from routes import session_routes
from routes.dependencies import get_registry
from services.auth_service import current_user, hash_password
from services.db_service import COGNITIVE_TESTS, RISK_EVALUATIONS, TEST_SCHEDULES, USERS, get_db
from services.profile_service import get_user_profile
from services.results_service import ResultsGateway
from services.session_service import SessionRegistry
from services.trial_service import get_definition
from tests.conftest import RecordingNotifier, T0

PATTERN = get_definition(TestType.PATTERN_RECOGNITION)


@pytest.fixture
def registry():
    # no countdowns: every phase advances as soon as it can
    instant = {
        t: get_definition(t).model_copy(
            update={"trial_seconds": 0, "feedback_seconds": 0, "study_seconds": 0, "delay_seconds": 0}
        )
        for t in TestType
    }
    return SessionRegistry(notifier=RecordingNotifier(), definitions=instant)


@pytest.fixture
def user_doc(user_id):
    return {
        "_id": ObjectId(user_id),
        "email": "ada@example.com",
        "password_hash": hash_password("secret1"),
        "first_name": "Ada",
        "last_name": "Lovelace",
        "age": 68,
        "gender": "female",
        "family_history": "none",
        "medical_conditions": "hypertension",
    }


@pytest.fixture
def client(fake_db, registry, user_id, user_doc):
    fake_db[USERS].find_one.return_value = user_doc
    fake_db[COGNITIVE_TESTS].insert_one.return_value.inserted_id = ObjectId()
    fake_db[RISK_EVALUATIONS].insert_one.return_value.inserted_id = ObjectId()

    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[current_user] = lambda: {"email": "ada@example.com", "user_id": user_id}
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(fake_db):
    app.dependency_overrides[get_db] = lambda: fake_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def start_session(client, test_type):
    created = client.post("/api/sessions", json={"test_type": test_type})
    assert created.status_code == 201
    session_id = created.json()["session"]["session_id"]
    started = client.post(f"/api/sessions/{session_id}/start")
    assert started.status_code == 200
    return session_id, started.json()["session"]


def submission_payload(answers):
    outcomes = []
    for i, answer in enumerate(answers):
        presented = T0 + timedelta(seconds=20 * i)
        outcomes.append({
            "trial_index": i,
            "presented_at": presented.isoformat(),
            "responded_at": (presented + timedelta(seconds=3)).isoformat(),
            "selected_value": answer,
        })
    return {
        "session_key": str(uuid4()),
        "test_type": "pattern_recognition",
        "started_at": T0.isoformat(),
        "ended_at": (T0 + timedelta(seconds=160)).isoformat(),
        "outcomes": outcomes,
        # ignored: the server computes the score itself
        "score": 10,
    }


def stored_test(user_id, test_type, score):
    return {
        "_id": ObjectId(),
        "user_id": ObjectId(user_id),
        "test_type": test_type,
        "score": score,
        "max_score": 10,
        "time_taken": 120,
        "test_data": {"performance_level": "Moderate"},
        "completed_at": T0,
    }


def where_called(fn, seen):
    """Wrap ``fn`` to note whether it ran on the event loop or in a worker thread."""
    def wrapper(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            seen[fn.__name__] = "loop"
        except RuntimeError:
            seen[fn.__name__] = "thread"
        return fn(*args, **kwargs)
    return wrapper


class TestPublicEndpoints:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_trials_never_reveal_answers(self, client):
        response = client.get("/api/trials/pattern_recognition")
        assert response.status_code == 200
        assert response.json()["test"]["total_trials"] == 8
        assert "correct_answer" not in response.text
        assert "explanation" not in response.text

    def test_all_tests_listed(self, client):
        tests = client.get("/api/trials").json()["tests"]
        assert {t["test_type"] for t in tests} == {"word_recall", "stroop", "pattern_recognition"}

    def test_unknown_test_type(self, client):
        response = client.get("/api/trials/chess")
        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_protected_routes_need_a_token(self, anon_client):
        assert anon_client.get("/api/results").status_code == 401
        assert anon_client.post("/api/sessions", json={"test_type": "stroop"}).status_code == 401


class TestLiveSessions:
    def test_pattern_session_end_to_end(self, client, fake_db):
        session_id, snapshot = start_session(client, "pattern_recognition")
        assert snapshot["phase"] == "running"
        session_key = snapshot["session_key"]

        for i, trial in enumerate(PATTERN.trials):
            answer = trial.correct_answer if i < 6 else -1
            response = client.post(f"/api/sessions/{session_id}/responses", json={"trial_index": i, "value": answer})
            assert response.status_code == 200
            assert response.json()["correct"] is (i < 6)

        snapshot = response.json()["session"]
        assert snapshot["phase"] == "results"
        assert snapshot["result"]["score"] == 7.5
        assert snapshot["result"]["performance_level"] == "High"
        assert snapshot["risk"]["final_risk"] == 24
        assert snapshot["risk"]["category"] == "Moderate"

        saved = client.post(f"/api/sessions/{session_id}/save")
        assert saved.status_code == 200
        assert saved.json()["result"]["percentage"] == 75
        assert saved.json()["risk"]["risk_score"] == 24

        stored = fake_db[COGNITIVE_TESTS].insert_one.call_args[0][0]
        assert stored["session_key"] == session_key
        assert stored["score"] == 7.5
        assert client.get(f"/api/sessions/{session_id}").status_code == 404

    def test_answering_the_wrong_trial(self, client):
        session_id, _ = start_session(client, "stroop")
        response = client.post(f"/api/sessions/{session_id}/responses", json={"trial_index": 3, "value": "red"})
        assert response.status_code == 409

    def test_quit_needs_confirmation(self, client):
        session_id, _ = start_session(client, "stroop")
        assert client.post(f"/api/sessions/{session_id}/quit", json={}).status_code == 409
        assert client.post(f"/api/sessions/{session_id}/quit", json={"confirm": True}).status_code == 200
        assert client.get(f"/api/sessions/{session_id}").status_code == 404

    def test_delete_only_outside_running(self, client):
        session_id, _ = start_session(client, "stroop")
        assert client.delete(f"/api/sessions/{session_id}").status_code == 409

        created = client.post("/api/sessions", json={"test_type": "stroop"}).json()["session"]
        assert client.delete(f"/api/sessions/{created['session_id']}").status_code == 200

    def test_word_recall_session(self, client):
        session_id, snapshot = start_session(client, "word_recall")
        assert snapshot["recall_phase"] == "recall"

        response = client.post(
            f"/api/sessions/{session_id}/recall",
            json={"words": ["apple", "ocean", "castle", "stars", "bridges"]},
        )
        assert response.status_code == 200
        assert response.json()["session"]["result"]["score"] == 5.0

    def test_save_failure_keeps_session_for_retry(self, client, fake_db):
        session_id, _ = start_session(client, "stroop")
        for i, trial in enumerate(get_definition(TestType.STROOP).trials):
            client.post(f"/api/sessions/{session_id}/responses", json={"trial_index": i, "value": trial.correct_answer})

        fake_db[COGNITIVE_TESTS].insert_one.side_effect = ServerSelectionTimeoutError("no servers")
        failed = client.post(f"/api/sessions/{session_id}/save")
        assert failed.status_code == 503
        assert failed.json()["ok"] is False

        snapshot = client.get(f"/api/sessions/{session_id}").json()["session"]
        assert snapshot["phase"] == "results"
        assert snapshot["save_error"]

        fake_db[COGNITIVE_TESTS].insert_one.side_effect = None
        assert client.post(f"/api/sessions/{session_id}/save").status_code == 200

    def test_recall_rejects_oversized_word_list(self, client):
        session_id, _ = start_session(client, "word_recall")
        response = client.post(
            f"/api/sessions/{session_id}/recall",
            json={"words": list("abcdefghijklmnopqrstuvwxyz")},
        )
        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert client.get(f"/api/sessions/{session_id}").json()["session"]["phase"] == "running"

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/does-not-exist").status_code == 404


class TestResults:
    def test_submission_is_rescored(self, client, fake_db):
        answers = [t.correct_answer for t in PATTERN.trials][:6] + [-1, -1]
        response = client.post("/api/results", json=submission_payload(answers))

        assert response.status_code == 201
        body = response.json()
        assert body["result"]["score"] == 7.5
        assert body["risk"]["risk_score"] == 24
        assert fake_db[COGNITIVE_TESTS].insert_one.call_args[0][0]["score"] == 7.5

    def test_incomplete_submission_rejected(self, client):
        answers = [t.correct_answer for t in PATTERN.trials][:5]
        response = client.post("/api/results", json=submission_payload(answers))
        assert response.status_code == 400

    def test_store_outage_is_reported(self, client, fake_db):
        fake_db[COGNITIVE_TESTS].insert_one.side_effect = ServerSelectionTimeoutError("no servers")
        answers = [t.correct_answer for t in PATTERN.trials]
        response = client.post("/api/results", json=submission_payload(answers))
        assert response.status_code == 503

    def test_history_rejects_unknown_type(self, client):
        assert client.get("/api/tests/history", params={"test_type": "chess"}).status_code == 400

    def test_result_lookup(self, client, fake_db):
        assert client.get("/api/tests/result/not-an-id").status_code == 400

        fake_db[COGNITIVE_TESTS].find_one.return_value = None
        assert client.get(f"/api/tests/result/{ObjectId()}").status_code == 404

    def test_latest_risk_empty(self, client, fake_db):
        fake_db[RISK_EVALUATIONS].find_one.return_value = None
        response = client.get("/api/risk/latest")
        assert response.status_code == 200
        assert response.json()["risk"] is None

    def test_dashboard_for_new_user(self, client, fake_db):
        fake_db[RISK_EVALUATIONS].find_one.return_value = None
        fake_db[TEST_SCHEDULES].find_one.return_value = None

        dashboard = client.get("/api/users/dashboard").json()["dashboard"]
        assert dashboard["user_profile"]["name"] == "Ada Lovelace"
        assert dashboard["risk_assessment"] is None
        assert dashboard["test_summary"]["total_tests"] == 0
        assert dashboard["recent_tests"] == []
        assert dashboard["next_scheduled_test"] is None

    def test_evaluation_over_recent_tests(self, client, fake_db, user_id):
        fake_db[COGNITIVE_TESTS].find.return_value.sort.return_value = [
            stored_test(user_id, "stroop", 6.5),
            stored_test(user_id, "pattern_recognition", 7.5),
        ]

        response = client.post("/api/evaluation/evaluate")

        assert response.status_code == 201
        body = response.json()
        assert body["risk_assessment"]["final_risk"] == 27
        assert body["risk_assessment"]["category"] == "Moderate"
        assert body["cognitive_summary"] == {"total_tests": 2, "average_score": 70}
        assert body["user_profile"]["gender"] == "female"
        assert body["evaluation_id"]
        stored = fake_db[RISK_EVALUATIONS].insert_one.call_args[0][0]
        assert stored["risk_score"] == 27
        assert "$gte" in fake_db[COGNITIVE_TESTS].find.call_args[0][0]["completed_at"]

    def test_evaluation_without_recent_tests(self, client, fake_db):
        fake_db[COGNITIVE_TESTS].find.return_value.sort.return_value = []
        assert client.post("/api/evaluation/evaluate").status_code == 400
        fake_db[RISK_EVALUATIONS].insert_one.assert_not_called()


class TestStoreCallsLeaveTheLoop:
    def test_store_calls_run_in_worker_threads(self, client, fake_db, monkeypatch):
        seen = {}
        fake_db[RISK_EVALUATIONS].find_one.return_value = None
        fake_db[TEST_SCHEDULES].find_one.return_value = None
        monkeypatch.setattr(ResultsGateway, "save_result", where_called(ResultsGateway.save_result, seen))
        monkeypatch.setattr(ResultsGateway, "dashboard", where_called(ResultsGateway.dashboard, seen))
        monkeypatch.setattr(session_routes, "get_user_profile", where_called(get_user_profile, seen))

        answers = [t.correct_answer for t in PATTERN.trials]
        assert client.post("/api/results", json=submission_payload(answers)).status_code == 201
        assert client.get("/api/users/dashboard").status_code == 200
        assert client.post("/api/sessions", json={"test_type": "stroop"}).status_code == 201

        assert seen == {"save_result": "thread", "dashboard": "thread", "get_user_profile": "thread"}


class TestAuthAndSchedule:
    def test_register(self, client, fake_db):
        fake_db[USERS].find_one.return_value = None
        fake_db[USERS].insert_one.return_value.inserted_id = ObjectId()
        response = client.post("/api/auth/register", json={
            "email": "Grace@Example.com",
            "password": "secret1",
            "first_name": "Grace",
            "last_name": "Hopper",
            "age": 70,
            "gender": "female",
        })
        assert response.status_code == 201
        assert response.json()["token"]
        assert response.json()["user"]["email"] == "grace@example.com"

    def test_register_existing_email(self, client):
        response = client.post("/api/auth/register", json={
            "email": "ada@example.com",
            "password": "secret1",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "age": 68,
            "gender": "female",
        })
        assert response.status_code == 409

    def test_login(self, client):
        ok = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "secret1"})
        assert ok.status_code == 200
        assert ok.json()["user"]["first_name"] == "Ada"

        bad = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
        assert bad.status_code == 401

    def test_create_schedule(self, client, fake_db):
        fake_db[TEST_SCHEDULES].insert_one.return_value.inserted_id = ObjectId()
        response = client.post(
            "/api/users/test-schedule",
            json={"test_type": "stroop", "scheduled_date": "2026-02-01", "frequency": "monthly"},
        )
        assert response.status_code == 201
        schedule = response.json()["schedule"]
        assert schedule["scheduled_date"] == "2026-02-01"
        assert schedule["status"] == "scheduled"

    def test_delete_missing_schedule(self, client, fake_db):
        fake_db[TEST_SCHEDULES].delete_one.return_value.deleted_count = 0
        assert client.delete(f"/api/users/test-schedule/{ObjectId()}").status_code == 404
