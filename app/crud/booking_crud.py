from typing import Optional, List, Dict, Any, Iterable
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from app.utils.date_utils import day_window, utcnow

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def as_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(str(value)):
        return ObjectId(str(value))
    return None


def get_booking(db, booking_id) -> Optional[dict]:
    oid = as_object_id(booking_id)
    if oid is None:
        return None
    return db.bookings.find_one({"_id": oid})


def insert_booking(db, document: dict) -> ObjectId:
    return db.bookings.insert_one(document).inserted_id


def update_booking_if(
        db,
        booking_id: ObjectId,
        expected: Dict[str, Any],
        set_fields: Dict[str, Any],
        unset_fields: Iterable[str] = (),
) -> bool:
    """
    Conditional write: apply the update only while the booking still matches
    ``expected``. Returns whether the update matched.
    """
    update = {"$set": {**set_fields, "updated_at": utcnow()}}
    unset_fields = list(unset_fields)
    if unset_fields:
        update["$unset"] = {field: "" for field in unset_fields}
    result = db.bookings.update_one({"_id": booking_id, **expected}, update)
    return result.matched_count == 1


def day_query(barber_id: str, day, **filters) -> dict:
    start, end = day_window(day)
    return {"barber_id": barber_id, "date": {"$gte": start, "$lt": end}, **filters}


def count_day_bookings(db, barber_id: str, day, **filters) -> int:
    return db.bookings.count_documents(day_query(barber_id, day, **filters))


def find_day_bookings(db, barber_id: str, day, sort=None, **filters) -> List[dict]:
    cursor = db.bookings.find(day_query(barber_id, day, **filters))
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def find_newest_booking(db, query: dict) -> Optional[dict]:
    found = list(db.bookings.find(query).sort(NEWEST_FIRST).limit(1))
    return found[0] if found else None


def find_bookings(db, query: dict, limit: int = 0, sort=None) -> List[dict]:
    cursor = db.bookings.find(query).sort(sort or NEWEST_FIRST)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_stale_unpaid(db, cutoff) -> List[dict]:
    """Pending bookings still waiting for payment that were created before ``cutoff``"""
    return list(db.bookings.find({
        "status": "pending",
        "payment_status": "pending",
        "created_at": {"$lt": cutoff},
    }).sort("created_at", ASCENDING))


def count_by_barber(db, barber_ids: List[str], day, statuses: List[str]) -> Dict[str, int]:
    """Per-barber count of bookings on ``day`` in one of ``statuses``; unknown ids count 0"""
    start, end = day_window(day)
    counts = {barber_id: 0 for barber_id in barber_ids}
    for booking in db.bookings.find(
            {"barber_id": {"$in": barber_ids}, "date": {"$gte": start, "$lt": end}, "status": {"$in": statuses}},
            {"barber_id": 1},
    ):
        counts[booking["barber_id"]] = counts.get(booking["barber_id"], 0) + 1
    return counts


def log_booking_history(db, booking_id, action: str, old_status: Optional[str], new_status: Optional[str],
                        actor: Optional[str], reason: Optional[str] = None):
    db.booking_history.insert_one({
        "booking_id": str(booking_id),
        "action": action,
        "old_status": old_status,
        "new_status": new_status,
        "reason": reason,
        "actor": actor,
        "timestamp": utcnow(),
    })
