# services/notification_service.py
import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def test_saved(self, user_id: str, record: Dict[str, Any]) -> None: ...

    def save_failed(self, user_id: str, error: Exception) -> None: ...


class LoggingNotifier:
    """Default notifier: the HTTP response carries the message, we only log."""

    def test_saved(self, user_id: str, record: Dict[str, Any]) -> None:
        logger.info(
            "Test result %s saved for user %s (%s, %s%%)",
            record.get("id"), user_id, record.get("test_type"), record.get("percentage"),
        )

    def save_failed(self, user_id: str, error: Exception) -> None:
        logger.error("Saving results for user %s failed: %s", user_id, error)

