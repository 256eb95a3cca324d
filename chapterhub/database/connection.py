import logging

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from chapterhub.config import MONGO_DB, MONGO_URI

logger = logging.getLogger(__name__)

VOTES_COLLECTION = "votes"
VOTE_STATE_COLLECTION = "vote_state"
MEMBERS_COLLECTION = "members"
COMMITTEES_COLLECTION = "committees"
EVENTS_COLLECTION = "events"
MINUTES_COLLECTION = "minutes"
LOCKDOWN_COLLECTION = "lockdown_state"
PENDING_MEMBERS_COLLECTION = "pending_members"
GEM_RECORDS_COLLECTION = "gem_records"


def ensure_indexes(db: Database) -> None:
    db[MEMBERS_COLLECTION].create_index("user_id", unique=True)
    db[MEMBERS_COLLECTION].create_index("roll_no", unique=True)
    db[COMMITTEES_COLLECTION].create_index("name", unique=True)
    db[EVENTS_COLLECTION].create_index([("start_time", ASCENDING)])
    db[EVENTS_COLLECTION].create_index("recurrence_parent_id")
    db[MINUTES_COLLECTION].create_index("meeting_date_key")
    db[VOTES_COLLECTION].create_index([("ended", ASCENDING), ("created_at", ASCENDING)])
    db[LOCKDOWN_COLLECTION].create_index("key", unique=True)
    db[PENDING_MEMBERS_COLLECTION].create_index("user_id", unique=True)
    db[PENDING_MEMBERS_COLLECTION].create_index("roll_no", unique=True)
    db[GEM_RECORDS_COLLECTION].create_index([("member_id", ASCENDING), ("semester", ASCENDING)], unique=True)


class MongoConnector:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(MongoConnector, cls).__new__(cls)
            try:
                instance.client = MongoClient(MONGO_URI)
                instance.db = instance.client[MONGO_DB]
                instance.client.server_info()
                ensure_indexes(instance.db)
                logger.info(f"Connected to MongoDB: {MONGO_DB}")
            except Exception as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise
            cls._instance = instance
        return cls._instance

    @classmethod
    def close(cls):
        if cls._instance is not None:
            cls._instance.client.close()
            cls._instance = None
            logger.info("MongoDB connection closed")


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    return MongoConnector().db
