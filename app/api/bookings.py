# app/api/bookings.py

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status

from app.core.errors import BookingError
from app.core.logger import logger
from app.core.security import get_current_user
from app.db.client import get_db
from app.helpers.booking_helper import serialize_booking, serialize_queue_entry
from app.models.booking import (
    BookingCreate, PublicBookingCreate, StartBookingRequest, VerifyOtpRequest,
    PaymentUpdateRequest, AvailabilityResponse,
)
from app.services.admission_service import AdmissionService
from app.services.booking_service import BookingService
from app.services.slot_ledger import SlotLedger

router = APIRouter(
    prefix="/booking",
    tags=["Booking"]
)


def get_admission_service(db=Depends(get_db)) -> AdmissionService:
    return AdmissionService(db)


def get_booking_service(db=Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_slot_ledger(db=Depends(get_db)) -> SlotLedger:
    return SlotLedger(db)


def _rejection(e: BookingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


def _server_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error while trying to {action}: {str(e)}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


@router.get("/history")
def booking_history(
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    """Customer's own bookings, newest first"""
    try:
        return booking_service.customer_history(current_user)
    except Exception as e:
        raise _server_error("load booking history", e)


@router.get("/barber")
def barber_bookings(
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    """Bookings addressed to the signed-in barber, newest first"""
    try:
        return booking_service.provider_bookings(current_user)
    except Exception as e:
        raise _server_error("load barber bookings", e)


@router.get("/barber/{barber_id}/all")
def barber_all_bookings(
        barber_id: str,
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    """Non-cancelled bookings of a barber across all days, for shop statistics"""
    try:
        return [serialize_queue_entry(booking) for booking in ledger.all_active_bookings(barber_id)]
    except Exception as e:
        raise _server_error(f"load all bookings for barber {barber_id}", e)


@router.get("/availability")
def check_availability_batch(
        barber_ids: str = Query(..., description="Comma separated barber ids"),
        day: date = Query(..., alias="date"),
        current_user: dict = Depends(get_current_user),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    """
    Availability for several barbers at once. Barbers that do not exist are
    left out of the result.
    """
    results = {}
    try:
        for barber_id in [value.strip() for value in barber_ids.split(",") if value.strip()]:
            try:
                results[barber_id] = ledger.availability(barber_id, day)
            except BookingError:
                continue
        return results
    except Exception as e:
        raise _server_error("check availability", e)


@router.get("/availability/{barber_id}", response_model=AvailabilityResponse)
def check_availability(
        barber_id: str,
        day: date = Query(..., alias="date"),
        current_user: dict = Depends(get_current_user),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    """Free slots left for the day, or how many bookings a Black Premium request could displace"""
    try:
        return ledger.availability(barber_id, day)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"check availability for barber {barber_id}", e)


@router.get("/daily-counts/{barber_id}")
def daily_counts(
        barber_id: str,
        day: date = Query(..., alias="date"),
        current_user: dict = Depends(get_current_user),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    try:
        return ledger.daily_counts(barber_id, day)
    except Exception as e:
        raise _server_error(f"count bookings for barber {barber_id}", e)


@router.get("/barber-appointments-batch")
def barber_appointments_batch(
        barber_ids: str = Query(..., description="Comma separated barber ids"),
        day: date = Query(..., alias="date"),
        current_user: dict = Depends(get_current_user),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    """Confirmed and started bookings per barber for the day"""
    try:
        ids = [value.strip() for value in barber_ids.split(",") if value.strip()]
        return ledger.in_service_counts(ids, day)
    except Exception as e:
        raise _server_error("count appointments for barbers", e)


@router.get("/barber-appointments/{barber_id}")
def barber_appointments(
        barber_id: str,
        day: date = Query(..., alias="date"),
        current_user: dict = Depends(get_current_user),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    """Barber's queue for the day in service order"""
    try:
        return [serialize_queue_entry(booking) for booking in ledger.queue(barber_id, day)]
    except Exception as e:
        raise _server_error(f"load queue for barber {barber_id}", e)


@router.get("/public/barber-queue/{barber_id}")
def public_barber_queue(
        barber_id: str,
        day: date = Query(..., alias="date"),
        ledger: SlotLedger = Depends(get_slot_ledger)
):
    try:
        return [serialize_queue_entry(booking) for booking in ledger.queue(barber_id, day)]
    except Exception as e:
        raise _server_error(f"load public queue for barber {barber_id}", e)


@router.post("", status_code=http_status.HTTP_201_CREATED)
def create_booking(
        booking_data: BookingCreate,
        current_user: dict = Depends(get_current_user),
        admission_service: AdmissionService = Depends(get_admission_service)
):
    """Admit a booking, displacing a lower tier one if a Black Premium request finds the day full"""
    try:
        booking = admission_service.create_booking(booking_data, current_user)
        return serialize_booking(booking, include_otp=not booking_data.is_offline_booking)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error("create booking", e)


@router.post("/public", status_code=http_status.HTTP_201_CREATED)
def create_public_booking(
        booking_data: PublicBookingCreate,
        admission_service: AdmissionService = Depends(get_admission_service)
):
    try:
        booking = admission_service.create_public_booking(booking_data)
        return serialize_booking(booking)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error("create public booking", e)


@router.post("/verify-otp")
def verify_otp(
        request: VerifyOtpRequest,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        booking_service.verify_otp(request.booking_id, current_user, request.otp)
        return {"status": "success", "message": "OTP verified"}
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error("verify OTP", e)


@router.put("/accept/{booking_id}")
def accept_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.accept(booking_id, current_user)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"accept booking {booking_id}", e)


@router.put("/decline/{booking_id}")
def decline_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.decline(booking_id, current_user)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"decline booking {booking_id}", e)


@router.put("/cancel/{booking_id}")
def cancel_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.cancel(booking_id, current_user)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"cancel booking {booking_id}", e)


@router.put("/cancel-pending/{booking_id}")
def cancel_pending_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    """Drop an unpaid booking and hand its slot back to a displaced one"""
    try:
        booking = booking_service.cancel_pending(booking_id, current_user)
        return {"msg": "Booking cancelled and previous booking reinstated", "booking": booking}
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"cancel pending booking {booking_id}", e)


@router.post("/verify-otp-and-start/{booking_id}")
def start_booking(
        booking_id: str,
        request: StartBookingRequest,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.start(booking_id, current_user, request.otp)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"start booking {booking_id}", e)


@router.put("/complete/{booking_id}")
def complete_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.complete(booking_id, current_user)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"complete booking {booking_id}", e)


@router.put("/update-payment/{booking_id}")
def update_payment(
        booking_id: str,
        payment_update: PaymentUpdateRequest,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.update_payment(booking_id, current_user, payment_update)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"update payment for booking {booking_id}", e)


@router.get("/{booking_id}")
def get_booking(
        booking_id: str,
        current_user: dict = Depends(get_current_user),
        booking_service: BookingService = Depends(get_booking_service)
):
    try:
        return booking_service.get_booking(booking_id, current_user)
    except BookingError as e:
        raise _rejection(e)
    except Exception as e:
        raise _server_error(f"fetch booking {booking_id}", e)
