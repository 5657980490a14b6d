from datetime import date

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.utils.date_utils import utcnow

DAILY_RESET_KEY = "daily_reset"


def get_last_daily_reset(db):
    marker = db.maintenance.find_one({"_id": DAILY_RESET_KEY})
    return marker.get("last_reset_day") if marker else None


def claim_daily_reset(db, day: date) -> bool:
    """
    Record ``day`` as reset, once across every worker and API process.

    Only the caller that moves the stored day forward gets True; days are
    stored as ISO strings so they compare in calendar order.
    """
    day_key = day.isoformat()
    claimed = db.maintenance.find_one_and_update(
        {"_id": DAILY_RESET_KEY, "last_reset_day": {"$lt": day_key}},
        {"$set": {"last_reset_day": day_key, "claimed_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed:
        return True
    try:
        db.maintenance.insert_one({"_id": DAILY_RESET_KEY, "last_reset_day": day_key, "claimed_at": utcnow()})
        return True
    except DuplicateKeyError:
        return False
