# app/services/booking_service.py

from datetime import timedelta
from typing import Optional, Dict, Any, List

from app.core import config
from app.core.errors import (
    BookingNotFound, NotAuthorized, BlockedByHigherPriorityUnpaid, InvalidOtp,
    AlreadySettled, PaymentNotPending, InvalidTransition, LedgerConflict, BookingError,
)
from app.core.logger import logger
from app.crud import booking_crud, user_crud
from app.helpers.booking_helper import (
    PENDING, CONFIRMED, STARTED, COMPLETED, CANCELLED,
    PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_TIMEOUT_REASON,
    serialize_booking, customer_identifier,
)
from app.helpers.slot_lock import slot_lock
from app.services.notification_service import NotificationService, booking_events
from app.services.reinstatement_service import ReinstatementService
from app.services.slot_ledger import SlotLedger
from app.services.wallet_service import WalletService
from app.utils.date_utils import format_booking_datetime, utcnow

CANCELLABLE_STATUSES = (PENDING, CONFIRMED)

COMPLETION_COINS = 1
LOYALTY_MILESTONE = 10
LOYALTY_BONUS_COINS = 10


def reached_loyalty_milestone(completed_bookings: int) -> bool:
    """True when the count just crossed a multiple of ten"""
    return (completed_bookings - 1) // LOYALTY_MILESTONE != completed_bookings // LOYALTY_MILESTONE


class BookingService:
    """
    Lifecycle transitions of a single booking:

        pending -> confirmed -> started -> completed
        pending / confirmed -> cancelled (decline, cancel, cancel-pending, payment timeout)

    Decline, cancel and complete are refused while another unpaid booking of
    the same barber and day outranks the one being changed. Every
    cancellation path may reinstate a displaced booking.
    """

    def __init__(self, db, ledger: Optional[SlotLedger] = None, wallet: Optional[WalletService] = None,
                 notifier: Optional[NotificationService] = None, events=None):
        if db is None:
            raise ValueError("Database connection is required")
        self.db = db
        self.ledger = ledger or SlotLedger(db)
        self.wallet = wallet or WalletService(db)
        self.notifier = notifier or NotificationService(db)
        self.events = events or booking_events
        self.reinstatement = ReinstatementService(db, self.ledger, self.wallet, self.notifier)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _load(self, booking_id) -> dict:
        booking = booking_crud.get_booking(self.db, booking_id)
        if not booking:
            raise BookingNotFound()
        return booking

    @staticmethod
    def _is_provider(booking: dict, actor: dict) -> bool:
        return booking.get("barber_id") == str(actor["_id"])

    @staticmethod
    def _is_customer(booking: dict, actor: dict) -> bool:
        return bool(booking.get("user_id")) and booking.get("user_id") == str(actor["_id"])

    def _require_provider(self, booking: dict, actor: dict):
        if not self._is_provider(booking, actor):
            logger.warning(f"User {actor['_id']} is not the barber of booking {booking['_id']}")
            raise NotAuthorized()

    def _require_customer(self, booking: dict, actor: dict):
        if not self._is_customer(booking, actor):
            logger.warning(f"User {actor['_id']} is not the customer of booking {booking['_id']}")
            raise NotAuthorized()

    def get_booking(self, booking_id, actor: dict) -> Dict[str, Any]:
        booking = self._load(booking_id)
        if not (self._is_provider(booking, actor) or self._is_customer(booking, actor)):
            raise NotAuthorized()
        return serialize_booking(booking, include_otp=self._is_customer(booking, actor))

    def customer_history(self, actor: dict) -> List[Dict[str, Any]]:
        bookings = booking_crud.find_bookings(self.db, {"user_id": str(actor["_id"])})
        return [serialize_booking(booking, include_otp=True) for booking in bookings]

    def provider_bookings(self, actor: dict) -> List[Dict[str, Any]]:
        bookings = booking_crud.find_bookings(self.db, {"barber_id": str(actor["_id"])})
        return [serialize_booking(booking) for booking in bookings]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, booking: dict, new_status: str, actor_id: Optional[str], action: str,
                    extra: Optional[dict] = None, expected: Optional[dict] = None):
        guard = expected or {"status": booking["status"]}
        if not booking_crud.update_booking_if(self.db, booking["_id"], guard, {"status": new_status, **(extra or {})}):
            logger.warning(f"Booking {booking['_id']} changed before {action} could be applied")
            raise LedgerConflict()
        booking_crud.log_booking_history(
            self.db, booking["_id"], action, booking["status"], new_status,
            actor=actor_id, reason=(extra or {}).get("cancellation_reason"),
        )

    def _notify_customer(self, booking: dict, title: str, message_tail: str, provider_name: str):
        if not booking.get("user_id"):
            return
        formatted_date, formatted_time = format_booking_datetime(booking["date"], booking["time"])
        self.notifier.notify(
            booking["user_id"],
            title,
            f"Your booking with {provider_name} on {formatted_date} at {formatted_time} {message_tail}",
        )

    def accept(self, booking_id, actor: dict) -> Dict[str, Any]:
        booking = self._load(booking_id)
        self._require_provider(booking, actor)
        if booking["status"] != PENDING:
            raise InvalidTransition(f"Only pending bookings can be accepted (current status: {booking['status']})")

        self._transition(booking, CONFIRMED, str(actor["_id"]), "accepted", {"confirmed_at": utcnow()})
        logger.info(f"Booking {booking_id} accepted by barber {actor['_id']}")

        self._notify_customer(booking, "Booking Confirmed", "has been confirmed.", actor.get("name", "your barber"))
        return serialize_booking(self._load(booking_id))

    def decline(self, booking_id, actor: dict) -> Dict[str, Any]:
        booking = self._load(booking_id)
        self._require_provider(booking, actor)
        updated = self._cancel(
            booking, actor_id=str(actor["_id"]), action="declined", reason="Declined by barber",
            blocked_message="Cannot decline this appointment. A higher priority appointment has pending payments.",
        )
        self._notify_customer(booking, "Booking Declined", "has been declined.", actor.get("name", "your barber"))
        return updated

    def cancel(self, booking_id, actor: dict) -> Dict[str, Any]:
        booking = self._load(booking_id)
        self._require_customer(booking, actor)
        return self._cancel(
            booking, actor_id=str(actor["_id"]), action="cancelled", reason="Cancelled by customer",
            blocked_message="Cannot cancel this appointment. A higher priority appointment has pending payments.",
            reject_settled=True,
        )

    def cancel_pending(self, booking_id, actor: dict) -> Dict[str, Any]:
        """Customer abandons an unpaid booking; no priority guard applies"""
        booking = self._load(booking_id)
        self._require_customer(booking, actor)
        if booking.get("payment_status") != PAYMENT_PENDING:
            raise PaymentNotPending()
        return self._cancel(
            booking, actor_id=str(actor["_id"]), action="cancelled_pending_payment",
            reason="Payment abandoned by customer", guarded=False,
            expected={"payment_status": PAYMENT_PENDING},
        )

    def _cancel(self, booking: dict, actor_id: Optional[str], action: str, reason: str,
                blocked_message: Optional[str] = None, guarded: bool = True, reject_settled: bool = False,
                expected: Optional[dict] = None) -> Dict[str, Any]:
        """Shared cancellation path: guard, cancel, reinstate, broadcast"""
        if booking["status"] not in CANCELLABLE_STATUSES:
            raise InvalidTransition(f"Bookings in status {booking['status']} cannot be cancelled")

        with slot_lock(self.db, booking["barber_id"], booking["date"]):
            booking = self._load(booking["_id"])
            if booking["status"] not in CANCELLABLE_STATUSES:
                raise LedgerConflict()

            if guarded:
                blocking = self.ledger.blocking_higher_priority(booking)
                if blocking:
                    logger.info(f"Booking {booking['_id']} {action} blocked by unpaid booking {blocking['_id']}")
                    raise BlockedByHigherPriorityUnpaid(blocked_message)

            if reject_settled and booking.get("payment_status") == PAYMENT_COMPLETED:
                logger.warning(f"Attempted to cancel booking {booking['_id']} but payment was already completed.")
                raise AlreadySettled()

            self._transition(
                booking, CANCELLED, actor_id, action,
                {"cancellation_reason": reason, "cancelled_at": utcnow()},
                expected={"status": booking["status"], **(expected or {})},
            )
            reinstated = self.reinstatement.reinstate_after(booking)

        logger.info(
            f"Booking {booking['_id']} {action}"
            f"{'; reinstated ' + str(reinstated['_id']) if reinstated else ''}"
        )
        updated = serialize_booking(self._load(booking["_id"]))
        self.events.publish("bookingCancelled", updated)
        return updated

    def start(self, booking_id, actor: dict, otp: Optional[str]) -> Dict[str, Any]:
        booking = self._load(booking_id)
        self._require_provider(booking, actor)
        if booking["status"] != CONFIRMED:
            raise InvalidTransition(f"Only confirmed bookings can be started (current status: {booking['status']})")

        # Walk-ins have no OTP to present
        if not booking.get("is_offline_booking") and booking.get("otp") != otp:
            logger.info(f"Invalid OTP presented for booking {booking_id}")
            raise InvalidOtp()

        self._transition(booking, STARTED, str(actor["_id"]), "started", {"started_at": utcnow()})
        logger.info(f"Booking {booking_id} started by barber {actor['_id']}")

        self._notify_customer(booking, "Booking Started", "has started.", actor.get("name", "your barber"))
        return serialize_booking(self._load(booking_id))

    def verify_otp(self, booking_id, actor: dict, otp: str) -> bool:
        booking = self._load(booking_id)
        if not (self._is_provider(booking, actor) or self._is_customer(booking, actor)):
            raise NotAuthorized()
        if booking.get("otp") != otp:
            raise InvalidOtp()
        return True

    def complete(self, booking_id, actor: dict) -> Dict[str, Any]:
        booking = self._load(booking_id)
        self._require_provider(booking, actor)
        if booking["status"] != STARTED:
            raise InvalidTransition(f"Only started bookings can be completed (current status: {booking['status']})")

        blocking = self.ledger.blocking_higher_priority(booking, include_started=True)
        if blocking:
            logger.info(f"Completion of booking {booking_id} blocked by unpaid booking {blocking['_id']}")
            raise BlockedByHigherPriorityUnpaid(
                "Cannot complete this appointment. A higher priority appointment has pending payments."
            )

        extra = {"completed_at": utcnow()}
        if booking.get("is_offline_booking"):
            extra["payment_status"] = PAYMENT_COMPLETED
        self._transition(booking, COMPLETED, str(actor["_id"]), "completed", extra)
        user_crud.increment_counter(self.db, booking["barber_id"], "todays_bookings")
        logger.info(f"Booking {booking_id} completed by barber {actor['_id']}")

        provider_name = actor.get("name", "your barber")
        customer = None
        if booking.get("user_id"):
            customer = self._reward_completion(booking, provider_name)

        formatted_date, formatted_time = format_booking_datetime(booking["date"], booking["time"])
        self.notifier.notify(
            booking["barber_id"],
            "Booking Completed",
            f"Booking for {customer_identifier(booking, customer)} on {formatted_date} at {formatted_time} "
            f"has been completed.",
        )
        return serialize_booking(self._load(booking_id))

    def _reward_completion(self, booking: dict, provider_name: str) -> Optional[dict]:
        customer = user_crud.increment_counter(self.db, booking["user_id"], "completed_bookings")
        if not customer:
            logger.warning(f"Customer {booking['user_id']} of booking {booking['_id']} not found for rewards")
            return None

        completed_bookings = customer.get("completed_bookings", 0)
        self.wallet.credit(
            booking["user_id"], COMPLETION_COINS,
            f"Earned {COMPLETION_COINS} Setkar Coin for completing booking",
            booking_id=booking["_id"],
        )

        loyalty_reward = 0
        if reached_loyalty_milestone(completed_bookings):
            loyalty_reward = LOYALTY_BONUS_COINS
            self.wallet.credit(
                booking["user_id"], loyalty_reward,
                f"Loyalty reward: {loyalty_reward} Setkar Coins for completing {completed_bookings} bookings",
                booking_id=booking["_id"],
            )
            self.db.users.update_one(
                {"_id": customer["_id"]},
                {"$inc": {"loyalty_rewards_earned": 1}, "$set": {"last_loyalty_reward_date": utcnow()}},
            )

        message = f"has been completed. You earned {COMPLETION_COINS} Setkar Coin!"
        if loyalty_reward:
            message += f" Loyalty bonus: {loyalty_reward} extra coins for completing {completed_bookings} bookings!"
        self._notify_customer(booking, "Booking Completed", message, provider_name)
        return customer

    def update_payment(self, booking_id, actor: dict, payment_update) -> Dict[str, Any]:
        booking = self._load(booking_id)
        if not (self._is_provider(booking, actor) or self._is_customer(booking, actor)):
            raise NotAuthorized()

        fields = {key: value for key, value in payment_update.model_dump(exclude_unset=True).items() if value is not None}
        if not fields:
            raise InvalidTransition("No payment fields provided")
        if booking["status"] == CANCELLED and fields.get("payment_status") == PAYMENT_COMPLETED:
            raise InvalidTransition("Cancelled bookings cannot be settled")

        booking_crud.update_booking_if(self.db, booking["_id"], {}, fields)
        booking_crud.log_booking_history(
            self.db, booking["_id"], "payment_updated", booking["status"], booking["status"],
            actor=str(actor["_id"]), reason=fields.get("payment_status"),
        )
        logger.info(f"Payment details updated for booking {booking_id}: {sorted(fields)}")
        return serialize_booking(self._load(booking_id))

    # ------------------------------------------------------------------
    # Payment timeout sweep
    # ------------------------------------------------------------------

    def expire_stale_bookings(self, timeout_seconds: Optional[int] = None, now=None) -> int:
        """
        Cancel bookings still pending with unpaid status after the payment
        timeout. Runs through the same cancellation path as a decline, minus
        the priority guard. Returns the number of bookings cancelled.
        """
        timeout_seconds = config.PAYMENT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        cutoff = (now or utcnow()) - timedelta(seconds=timeout_seconds)
        stale = booking_crud.find_stale_unpaid(self.db, cutoff)
        if stale:
            logger.info(f"Found {len(stale)} expired bookings.")

        expired = 0
        for booking in stale:
            try:
                self._cancel(
                    booking, actor_id=None, action="payment_timeout", reason=PAYMENT_TIMEOUT_REASON,
                    guarded=False, expected={"payment_status": PAYMENT_PENDING},
                )
            except BookingError as e:
                # Changed or locked meanwhile; the next sweep picks it up if still stale
                logger.warning(f"Skipping expiry of booking {booking['_id']}: {e.message}")
                continue
            expired += 1
            self._notify_expiry(booking)
        return expired

    def _notify_expiry(self, booking: dict):
        formatted_date, formatted_time = format_booking_datetime(booking["date"], booking["time"])
        provider = user_crud.get_user(self.db, booking["barber_id"])
        customer = user_crud.get_user(self.db, booking["user_id"]) if booking.get("user_id") else None

        if customer:
            self.notifier.notify(
                booking["user_id"],
                "Booking Cancelled",
                f"Your booking with {provider.get('name', 'your barber') if provider else 'your barber'} on "
                f"{formatted_date} at {formatted_time} was cancelled because payment was not completed in time.",
            )
        self.notifier.notify(
            booking["barber_id"],
            "Booking Cancelled (Payment Timeout)",
            f"A booking from {customer_identifier(booking, customer)} on {formatted_date} at {formatted_time} "
            f"was cancelled due to payment timeout.",
        )
