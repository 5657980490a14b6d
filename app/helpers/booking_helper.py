# app/helpers/booking_helper.py

import secrets
from datetime import datetime
from typing import Dict, Any, Optional, List
from bson import ObjectId

from app.helpers.priority_helper import booking_priority
from app.utils.date_utils import day_start, to_day, parse_clock_time, utcnow

DISPLACEMENT_REASON = "Cancelled due to a higher priority booking."
PAYMENT_TIMEOUT_REASON = "Payment not completed in time."

# Lifecycle
PENDING = "pending"
CONFIRMED = "confirmed"
STARTED = "started"
COMPLETED = "completed"
CANCELLED = "cancelled"

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"


def generate_otp() -> str:
    """6-digit one-time code for in-person start confirmation"""
    return str(100000 + secrets.randbelow(900000))


def validate_booking_data(booking_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a booking document before it is admitted.

    Exactly one of a customer id or offline customer details (name and phone)
    must be present.
    """
    errors = []

    has_customer = bool(booking_data.get("user_id"))
    has_offline_details = bool(booking_data.get("customer_name")) and bool(booking_data.get("customer_phone"))

    if booking_data.get("is_offline_booking"):
        if not has_offline_details:
            errors.append("Customer name and phone are required for offline bookings")
        if has_customer:
            errors.append("Offline bookings cannot reference a customer account")
        if booking_data.get("otp"):
            errors.append("Offline bookings do not carry an OTP")
    elif not has_customer:
        errors.append("Online bookings require a customer account")
    elif has_offline_details:
        errors.append("Online bookings cannot carry offline customer details")

    if not booking_data.get("barber_id"):
        errors.append("barber_id is required")

    if booking_data.get("total_price") is not None and booking_data["total_price"] < 0:
        errors.append("Total price cannot be negative")

    if errors:
        return {"valid": False, "message": "; ".join(errors), "errors": errors}
    return {"valid": True, "message": "Booking data is valid", "errors": []}


def format_booking_document(
        barber_id: str,
        booking_date,
        booking_time: str,
        services: List[dict],
        total_price: float,
        appointment_type: Optional[str],
        is_offline_booking: bool,
        payment_status: str,
        user_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        booking_id: Optional[ObjectId] = None,
) -> Dict[str, Any]:
    document = {
        "_id": booking_id or ObjectId(),
        "barber_id": barber_id,
        "date": day_start(booking_date),
        "time": booking_time,
        "services": services or [],
        "total_price": total_price,
        "appointment_type": appointment_type,
        "is_offline_booking": is_offline_booking,
        "status": PENDING,
        "payment_status": payment_status,
        "created_at": utcnow(),
        "displaced_by": None,
        "compensation_coins": 0,
    }
    if user_id:
        document["user_id"] = user_id
    if customer_name:
        document["customer_name"] = customer_name
    if customer_phone:
        document["customer_phone"] = customer_phone
    if not is_offline_booking:
        document["otp"] = generate_otp()
    return document


def serialize_booking(booking: Dict[str, Any], include_otp: bool = False) -> Dict[str, Any]:
    """Convert a stored booking to a JSON-safe dict; OTP is hidden unless asked for"""
    data = dict(booking)
    data["_id"] = str(data["_id"])
    data["id"] = data["_id"]
    if data.get("date") is not None:
        data["date"] = to_day(data["date"]).isoformat()
    for field in ("created_at", "updated_at", "cancelled_at", "confirmed_at", "started_at", "completed_at"):
        if isinstance(data.get(field), datetime):
            data[field] = data[field].isoformat()
    if not include_otp:
        data.pop("otp", None)
    data["priority"] = booking_priority(booking)
    return data


def _clock_sort_key(value: Optional[str]):
    try:
        return 0, parse_clock_time(value)
    except (ValueError, AttributeError):
        return 1, None


def queue_sort_key(booking: Dict[str, Any]):
    """Provider queue order: priority, then clock time, then creation time"""
    clock_rank, clock = _clock_sort_key(booking.get("time"))
    return (
        booking_priority(booking),
        clock_rank,
        clock.isoformat() if clock else "",
        booking.get("created_at") or datetime.min,
    )


def customer_identifier(booking: Dict[str, Any], customer: Optional[dict]) -> str:
    if booking.get("is_offline_booking"):
        return booking.get("customer_name") or "a walk-in customer"
    if customer:
        return customer.get("name") or "a customer"
    return "a customer"


def service_names(services: Optional[List[dict]]) -> str:
    names = [service.get("name") for service in services or [] if service.get("name")]
    return ", ".join(names) if names else "a service"


QUEUE_FIELDS = (
    "customer_name", "is_offline_booking", "date", "time", "appointment_type",
    "total_price", "status", "services", "payment_status", "user_id",
)


def serialize_queue_entry(booking: Dict[str, Any]) -> Dict[str, Any]:
    """Reduced booking view for provider queues; no contact details or codes"""
    data = serialize_booking(booking)
    entry = {"_id": data["_id"], "id": data["id"], "priority": data["priority"]}
    entry.update({field: data.get(field) for field in QUEUE_FIELDS})
    return entry
