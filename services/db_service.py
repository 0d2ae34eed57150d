# services/db_service.py
import logging

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from config.settings import settings
from services.errors import ValidationError

logger = logging.getLogger(__name__)

USERS = "users"
COGNITIVE_TESTS = "cognitive_tests"
RISK_EVALUATIONS = "risk_evaluations"
TEST_SCHEDULES = "test_schedules"

_client = None
_indexes_ready = False


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(settings.MONGODB_URI, tz_aware=True)
    return _client


def get_db():
    global _indexes_ready
    db = get_client()[settings.DB_NAME]
    if not _indexes_ready:
        try:
            ensure_indexes(db)
            _indexes_ready = True
        except PyMongoError as e:
            logger.warning("Could not create MongoDB indexes yet: %s", e)
    return db


def ensure_indexes(db) -> None:
    db[USERS].create_index("email", unique=True)
    db[COGNITIVE_TESTS].create_index([("user_id", ASCENDING), ("completed_at", DESCENDING)])
    db[RISK_EVALUATIONS].create_index([("user_id", ASCENDING), ("evaluated_at", DESCENDING)])
    db[TEST_SCHEDULES].create_index([("user_id", ASCENDING), ("scheduled_date", ASCENDING)])
    # session keys dedupe repeated saves of the same attempt
    for name in (COGNITIVE_TESTS, RISK_EVALUATIONS):
        db[name].create_index(
            "session_key",
            unique=True,
            partialFilterExpression={"session_key": {"$type": "string"}},
        )
    logger.info("MongoDB indexes ensured on %s", settings.DB_NAME)


def close_client() -> None:
    global _client, _indexes_ready
    if _client is not None:
        _client.close()
        _client = None
        _indexes_ready = False


def to_object_id(value) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise ValidationError(f"Invalid id: {value!r}")
    return ObjectId(str(value))
