from typing import Optional
from pymongo import ReturnDocument

from app.core import config
from app.crud.booking_crud import as_object_id


def get_user(db, user_id) -> Optional[dict]:
    oid = as_object_id(user_id)
    if oid is None:
        return None
    return db.users.find_one({"_id": oid})


def daily_capacity(provider: dict) -> int:
    capacity = provider.get("max_appointments_per_day")
    if capacity is None:
        return config.DEFAULT_MAX_APPOINTMENTS_PER_DAY
    return int(capacity)


def set_daily_capacity(db, provider_id, capacity: int) -> Optional[dict]:
    return db.users.find_one_and_update(
        {"_id": as_object_id(provider_id)},
        {"$set": {"max_appointments_per_day": capacity}},
        return_document=ReturnDocument.AFTER,
    )


def increment_counter(db, user_id, field: str, amount: int = 1) -> Optional[dict]:
    """Atomic $inc on a user counter, returning the updated document"""
    return db.users.find_one_and_update(
        {"_id": as_object_id(user_id)},
        {"$inc": {field: amount}},
        return_document=ReturnDocument.AFTER,
    )


def reset_todays_bookings(db) -> int:
    result = db.users.update_many({"role": "barber"}, {"$set": {"todays_bookings": 0}})
    return result.modified_count
