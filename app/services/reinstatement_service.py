# app/services/reinstatement_service.py

from typing import Optional

from app.core.logger import logger
from app.crud import booking_crud
from app.helpers.booking_helper import CANCELLED, CONFIRMED, DISPLACEMENT_REASON
from app.services.notification_service import NotificationService
from app.services.slot_ledger import SlotLedger
from app.services.wallet_service import WalletService
from app.utils.date_utils import utcnow


class ReinstatementService:
    """
    Restores a displaced booking once capacity frees up again.

    The booking displaced by the cancelled one is restored first; when the
    cancelled booking displaced nobody, the most recently created displaced
    booking of the same barber and day takes the freed slot. At most one
    booking is reinstated per cancellation.
    """

    def __init__(self, db, ledger: Optional[SlotLedger] = None, wallet: Optional[WalletService] = None,
                 notifier: Optional[NotificationService] = None):
        self.db = db
        self.ledger = ledger or SlotLedger(db)
        self.wallet = wallet or WalletService(db)
        self.notifier = notifier or NotificationService(db)

    def find_displaced(self, cancelled_booking: dict) -> Optional[dict]:
        marker = {"status": CANCELLED, "cancellation_reason": DISPLACEMENT_REASON}
        victim = booking_crud.find_newest_booking(
            self.db, {**marker, "displaced_by": str(cancelled_booking["_id"])}
        )
        if victim:
            return victim
        return booking_crud.find_newest_booking(
            self.db,
            booking_crud.day_query(cancelled_booking["barber_id"], cancelled_booking["date"], **marker),
        )

    def reinstate_after(self, cancelled_booking: dict) -> Optional[dict]:
        """Call after ``cancelled_booking`` is cancelled, under its slot lock"""
        victim = self.find_displaced(cancelled_booking)
        if not victim:
            return None

        if self.ledger.remaining_capacity(victim["barber_id"], victim["date"]) <= 0:
            logger.info(f"No capacity to reinstate booking {victim['_id']} for barber {victim['barber_id']}")
            return None

        coins = victim.get("compensation_coins") or 0
        reinstated = booking_crud.update_booking_if(
            self.db,
            victim["_id"],
            {"status": CANCELLED, "cancellation_reason": DISPLACEMENT_REASON},
            {"status": CONFIRMED, "compensation_coins": 0, "reinstated_at": utcnow()},
            unset_fields=["cancellation_reason", "displaced_by", "previous_status", "cancelled_at"],
        )
        if not reinstated:
            logger.warning(f"Displaced booking {victim['_id']} was already reinstated")
            return None

        booking_crud.log_booking_history(
            self.db, victim["_id"], "reinstated", CANCELLED, CONFIRMED,
            actor=str(cancelled_booking["_id"]),
        )
        logger.info(f"Reinstated booking {victim['_id']} after cancellation of {cancelled_booking['_id']}")

        customer_id = victim.get("user_id")
        if customer_id:
            if coins:
                self.wallet.debit(
                    customer_id, coins,
                    f"Booking reinstated: {coins} Setkar Coins compensation removed",
                    booking_id=victim["_id"],
                )
            self.notifier.notify(
                customer_id,
                "Booking Reinstated",
                f"Your previously cancelled booking has been reinstated. "
                f"{coins} Setkar Coins have been removed from your account.",
            )

        return booking_crud.get_booking(self.db, victim["_id"])
