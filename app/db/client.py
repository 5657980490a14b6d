from pymongo import MongoClient, ASCENDING, DESCENDING

from app.core import config
from app.core.logger import logger

_client = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        if not config.MONGO_URI:
            raise ValueError("MONGO_URI is not set in the environment")
        _client = MongoClient(config.MONGO_URI)
    return _client


def get_db():
    return get_client()[config.MONGO_DB_NAME]


def init_db(db=None):
    """Create the indexes the slot ledger queries rely on."""
    if db is None:
        db = get_db()
    db.bookings.create_index([("barber_id", ASCENDING), ("date", ASCENDING), ("time", ASCENDING)])
    db.bookings.create_index([("barber_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)])
    db.bookings.create_index([("displaced_by", ASCENDING)])
    db.bookings.create_index([("status", ASCENDING), ("payment_status", ASCENDING), ("created_at", ASCENDING)])
    db.coin_transactions.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info(f"MongoDB indexes ensured on {db.name}")
