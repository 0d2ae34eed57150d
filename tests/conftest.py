import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId

from models.user_model import UserProfile
from services.notification_service import LoggingNotifier

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


class FakeTime:
    """Virtual clock plus an awaitable sleep that only wakes on ``advance``."""

    def __init__(self, start: datetime = T0):
        self.now = start
        self._waiters = []

    def clock(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + timedelta(seconds=seconds), future))
        await future

    async def settle(self) -> None:
        for _ in range(10):
            await asyncio.sleep(0)

    async def advance(self, seconds: int) -> None:
        await self.settle()
        for _ in range(int(seconds)):
            self.now += timedelta(seconds=1)
            due = [w for w in self._waiters if w[0] <= self.now]
            self._waiters = [w for w in self._waiters if w[0] > self.now]
            for _, future in due:
                if not future.done():
                    future.set_result(None)
            await self.settle()


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def user_id():
    return str(ObjectId())


@pytest.fixture
def profile(user_id):
    return UserProfile(user_id=user_id, age=68, family_history="none", medical_conditions="hypertension")


@pytest.fixture
def fake_db():
    # one independent mock per collection name
    return defaultdict(MagicMock)


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.save_result.return_value = {"id": "result-1", "test_type": "pattern_recognition", "percentage": 75}
    mock.save_risk.return_value = {"id": "risk-1", "risk_score": 24, "risk_category": "Moderate"}
    return mock


class RecordingNotifier(LoggingNotifier):
    """Keeps every notice it sends so tests can inspect them."""

    def __init__(self):
        self.notices = []

    def test_saved(self, user_id, record):
        super().test_saved(user_id, record)
        self.notices.append({"user_id": user_id, "kind": "saved", "record": record})

    def save_failed(self, user_id, error):
        super().save_failed(user_id, error)
        self.notices.append({"user_id": user_id, "kind": "failed", "error": str(error)})


@pytest.fixture
def notifier():
    return RecordingNotifier()
