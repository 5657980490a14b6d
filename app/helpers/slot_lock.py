# app/helpers/slot_lock.py

import time
import uuid
from contextlib import contextmanager
from datetime import timedelta

from pymongo.errors import DuplicateKeyError

from app.core import config
from app.core.errors import SlotBusy
from app.core.logger import logger
from app.utils.date_utils import to_day, utcnow


def slot_key(barber_id: str, day) -> str:
    return f"{barber_id}:{to_day(day).isoformat()}"


@contextmanager
def slot_lock(db, barber_id: str, day, ttl_seconds: int = None, retries: int = None, backoff: float = None):
    """
    Serialize ledger mutations for one (barber, day).

    The lock is a lease document whose unique _id is the slot key. A lease
    past its expiry is taken over so a crashed holder cannot wedge the day.
    """
    ttl_seconds = config.SLOT_LOCK_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    retries = config.SLOT_LOCK_RETRIES if retries is None else retries
    backoff = config.SLOT_LOCK_BACKOFF_SECONDS if backoff is None else backoff

    key = slot_key(barber_id, day)
    token = uuid.uuid4().hex
    acquired = False

    for attempt in range(retries + 1):
        now = utcnow()
        lease = {"token": token, "acquired_at": now, "expires_at": now + timedelta(seconds=ttl_seconds)}
        try:
            db.slot_locks.insert_one({"_id": key, **lease})
            acquired = True
            break
        except DuplicateKeyError:
            taken_over = db.slot_locks.find_one_and_update(
                {"_id": key, "expires_at": {"$lt": now}},
                {"$set": lease},
            )
            if taken_over:
                logger.warning(f"Took over expired slot lock {key}")
                acquired = True
                break
        if attempt < retries:
            time.sleep(backoff * (attempt + 1))

    if not acquired:
        logger.warning(f"Slot lock {key} busy after {retries + 1} attempts")
        raise SlotBusy()

    try:
        yield key
    finally:
        db.slot_locks.delete_one({"_id": key, "token": token})
