# app/services/admission_service.py

from typing import Optional, Dict, Any

from app.core.errors import (
    CapacityExceeded, NoDisplaceableCandidate, InvalidBookingData, ProviderNotFound, NotAuthorized,
)
from app.core.logger import logger
from app.crud import booking_crud
from app.helpers.booking_helper import (
    PAYMENT_COMPLETED, PAYMENT_PENDING, PENDING,
    format_booking_document, validate_booking_data, service_names,
)
from app.helpers.priority_helper import is_top_tier
from app.helpers.slot_lock import slot_lock
from app.services.displacement_service import DisplacementService
from app.services.notification_service import NotificationService
from app.services.slot_ledger import SlotLedger
from app.utils.date_utils import format_booking_datetime


class AdmissionService:
    """
    Decides whether a new booking gets into a barber's day.

    Below capacity the booking is admitted outright. At capacity only a
    Black Premium request may get in, by displacing the newest Free, then
    Basic, then Premium booking. Counting, displacement and the insert all
    happen under the (barber, day) slot lock.
    """

    def __init__(self, db, ledger: Optional[SlotLedger] = None, displacement: Optional[DisplacementService] = None,
                 notifier: Optional[NotificationService] = None):
        if db is None:
            raise ValueError("Database connection is required")
        self.db = db
        self.ledger = ledger or SlotLedger(db)
        self.notifier = notifier or NotificationService(db)
        self.displacement = displacement or DisplacementService(db, notifier=self.notifier)

    def create_booking(self, booking_data, actor: dict) -> Dict[str, Any]:
        """Online booking for the signed-in customer, or a walk-in when is_offline_booking is set"""
        is_offline = booking_data.is_offline_booking
        if is_offline and str(actor["_id"]) != booking_data.barber_id:
            logger.warning(f"User {actor['_id']} tried to add a walk-in for barber {booking_data.barber_id}")
            raise NotAuthorized("Only the barber can add walk-in bookings")
        return self._admit(
            barber_id=booking_data.barber_id,
            booking_date=booking_data.date,
            booking_time=booking_data.time,
            services=[service.model_dump() for service in booking_data.services],
            total_price=booking_data.total_price,
            appointment_type=booking_data.appointment_type,
            is_offline_booking=is_offline,
            payment_status=PAYMENT_COMPLETED if is_offline else PAYMENT_PENDING,
            user_id=None if is_offline else str(actor["_id"]),
            customer_name=booking_data.customer_name if is_offline else None,
            customer_phone=booking_data.customer_phone if is_offline else None,
            title="New Booking",
            requester=booking_data.customer_name if is_offline else actor.get("name", "a customer"),
        )

    def create_public_booking(self, booking_data) -> Dict[str, Any]:
        """Account-less booking from the public website; stays unpaid until settled"""
        info = booking_data.customer_info
        return self._admit(
            barber_id=booking_data.barber_id,
            booking_date=booking_data.date,
            booking_time=booking_data.time,
            services=[service.model_dump() for service in booking_data.services],
            total_price=booking_data.total_price,
            appointment_type=booking_data.appointment_type,
            is_offline_booking=True,
            payment_status=PAYMENT_PENDING,
            customer_name=info.name,
            customer_phone=info.phone,
            title="New Public Booking",
            requester=f"{info.name} ({info.phone})",
        )

    def _admit(self, barber_id: str, booking_date, booking_time: str, services, total_price, appointment_type,
               is_offline_booking: bool, payment_status: str, title: str, requester: str,
               user_id: Optional[str] = None, customer_name: Optional[str] = None,
               customer_phone: Optional[str] = None) -> Dict[str, Any]:
        provider = self.ledger.get_provider(barber_id)
        if provider.get("role") != "barber":
            raise ProviderNotFound()

        document = format_booking_document(
            barber_id=barber_id,
            booking_date=booking_date,
            booking_time=booking_time,
            services=services,
            total_price=total_price,
            appointment_type=appointment_type,
            is_offline_booking=is_offline_booking,
            payment_status=payment_status,
            user_id=user_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
        )
        validation = validate_booking_data(document)
        if not validation["valid"]:
            raise InvalidBookingData(validation["message"])

        with slot_lock(self.db, barber_id, booking_date):
            capacity = self.ledger.capacity(barber_id, provider)
            admitted = self.ledger.admitted_count(barber_id, booking_date)

            victim = None
            coins = 0
            if admitted >= capacity:
                if not is_top_tier(appointment_type):
                    logger.info(f"Barber {barber_id} fully booked on {booking_date} ({admitted}/{capacity})")
                    raise CapacityExceeded()

                victim = self.ledger.select_victim(barber_id, booking_date)
                if victim is None:
                    logger.info(f"Barber {barber_id} full with non-displaceable bookings on {booking_date}")
                    raise NoDisplaceableCandidate()

                coins = self.displacement.displace(victim, document["_id"], provider)

            try:
                booking_crud.insert_booking(self.db, document)
            except Exception as e:
                logger.error(f"Failed to persist booking for barber {barber_id} on {booking_date}: {str(e)}")
                if victim is not None:
                    self.displacement.rollback(victim, coins)
                raise

        booking_crud.log_booking_history(
            self.db, document["_id"], "created", None, PENDING, actor=user_id or "public",
        )
        logger.info(
            f"Booking {document['_id']} admitted for barber {barber_id} on {booking_date} "
            f"({appointment_type or 'untyped'}{', displaced ' + str(victim['_id']) if victim else ''})"
        )

        formatted_date, formatted_time = format_booking_datetime(document["date"], booking_time)
        self.notifier.notify(
            barber_id,
            title,
            f"You have a new {'public ' if title == 'New Public Booking' else ''}booking from {requester} "
            f"for {service_names(services)} on {formatted_date} at {formatted_time}.",
        )
        return document
