# app/services/slot_ledger.py

from typing import Dict, List, Optional
from pymongo import ASCENDING, DESCENDING

from app.core.errors import ProviderNotFound
from app.crud import booking_crud, user_crud
from app.helpers.booking_helper import (
    PENDING, CONFIRMED, STARTED, CANCELLED, PAYMENT_PENDING, queue_sort_key,
)
from app.helpers.priority_helper import DISPLACEABLE_TIERS, canonical_tier, booking_priority

DISPLACEABLE_STATUSES = [PENDING, CONFIRMED]


class SlotLedger:
    """
    Read-only view of one barber's day: occupancy, remaining capacity and
    which bookings could be displaced. All queries use the closed-open
    [midnight, next midnight) window of the day.
    """

    def __init__(self, db):
        if db is None:
            raise ValueError("Database connection is required")
        self.db = db

    def get_provider(self, barber_id: str) -> dict:
        provider = user_crud.get_user(self.db, barber_id)
        if not provider:
            raise ProviderNotFound()
        return provider

    def capacity(self, barber_id: str, provider: Optional[dict] = None) -> int:
        return user_crud.daily_capacity(provider or self.get_provider(barber_id))

    def admitted_count(self, barber_id: str, day) -> int:
        return booking_crud.count_day_bookings(self.db, barber_id, day, status={"$ne": CANCELLED})

    def remaining_capacity(self, barber_id: str, day, provider: Optional[dict] = None) -> int:
        return max(0, self.capacity(barber_id, provider) - self.admitted_count(barber_id, day))

    def displaceable_candidates(self, barber_id: str, day) -> Dict[str, List[dict]]:
        """
        Pending/confirmed bookings grouped by tier, in victim search order
        (Free, Basic, Premium), each group newest first. Black Premium and
        unrecognized tiers are never displaceable.
        """
        bookings = booking_crud.find_day_bookings(
            self.db, barber_id, day,
            sort=booking_crud.NEWEST_FIRST,
            status={"$in": DISPLACEABLE_STATUSES},
        )
        groups = {tier: [] for tier in DISPLACEABLE_TIERS}
        for booking in bookings:
            tier = canonical_tier(booking.get("appointment_type"))
            if tier in groups:
                groups[tier].append(booking)
        return groups

    def select_victim(self, barber_id: str, day) -> Optional[dict]:
        for group in self.displaceable_candidates(barber_id, day).values():
            if group:
                return group[0]
        return None

    def replaceable_pending_payment_count(self, barber_id: str, day, include_started: bool = False) -> int:
        statuses = [PENDING, CONFIRMED, STARTED] if include_started else [PENDING, CONFIRMED]
        bookings = booking_crud.find_day_bookings(self.db, barber_id, day, status={"$in": statuses})
        return sum(1 for booking in bookings if canonical_tier(booking.get("appointment_type")) in DISPLACEABLE_TIERS)

    def blocking_higher_priority(self, booking: dict, include_started: bool = False) -> Optional[dict]:
        """
        Another unpaid booking on the same barber/day that outranks ``booking``.
        Cancelling, declining or completing around it is not allowed.
        """
        statuses = [PENDING, CONFIRMED, STARTED] if include_started else [PENDING, CONFIRMED]
        current = booking_priority(booking)
        others = booking_crud.find_day_bookings(
            self.db, booking["barber_id"], booking["date"],
            _id={"$ne": booking["_id"]},
            payment_status=PAYMENT_PENDING,
            status={"$in": statuses},
        )
        for other in others:
            if booking_priority(other) < current:
                return other
        return None

    def availability(self, barber_id: str, day, provider: Optional[dict] = None) -> dict:
        provider = provider or self.get_provider(barber_id)
        capacity = self.capacity(barber_id, provider)
        admitted = self.admitted_count(barber_id, day)
        if admitted < capacity:
            return {"type": "free", "count": capacity - admitted}
        return {"type": "premium", "count": self.replaceable_pending_payment_count(barber_id, day)}

    def daily_counts(self, barber_id: str, day) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for booking in booking_crud.find_day_bookings(self.db, barber_id, day, status={"$ne": CANCELLED}):
            label = booking.get("appointment_type") or "Unspecified"
            counts[label] = counts.get(label, 0) + 1
        return counts

    def queue(self, barber_id: str, day) -> List[dict]:
        bookings = booking_crud.find_day_bookings(self.db, barber_id, day, status={"$ne": CANCELLED})
        return sorted(bookings, key=queue_sort_key)

    def in_service_counts(self, barber_ids: List[str], day) -> Dict[str, int]:
        """Confirmed or started bookings per barber for the day; every requested id is present"""
        return booking_crud.count_by_barber(self.db, barber_ids, day, [CONFIRMED, STARTED])

    def all_active_bookings(self, barber_id: str) -> List[dict]:
        """Every non-cancelled booking of a barber, latest day first and by clock time within a day"""
        return booking_crud.find_bookings(
            self.db,
            {"barber_id": barber_id, "status": {"$ne": CANCELLED}},
            sort=[("date", DESCENDING), ("time", ASCENDING)],
        )
