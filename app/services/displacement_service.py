# app/services/displacement_service.py

from typing import Optional

from app.core.errors import LedgerConflict
from app.core.logger import logger
from app.crud import booking_crud
from app.helpers.booking_helper import CANCELLED, DISPLACEMENT_REASON
from app.helpers.priority_helper import compensation_for
from app.services.notification_service import NotificationService
from app.services.wallet_service import WalletService
from app.utils.date_utils import utcnow
from app.services.slot_ledger import DISPLACEABLE_STATUSES


class DisplacementService:
    """
    Cancels a lower-priority booking to make room for a Black Premium one and
    compensates its customer.
    """

    def __init__(self, db, wallet: Optional[WalletService] = None, notifier: Optional[NotificationService] = None):
        self.db = db
        self.wallet = wallet or WalletService(db)
        self.notifier = notifier or NotificationService(db)

    def displace(self, victim: dict, displacer_id, provider: dict) -> int:
        """
        Cancel ``victim`` in favour of booking ``displacer_id``.

        The cancellation only applies while the victim is still pending or
        confirmed; losing that race raises LedgerConflict before any coins
        move. Returns the coins credited.
        """
        coins = compensation_for(victim.get("appointment_type"))
        customer_id = victim.get("user_id")

        displaced = booking_crud.update_booking_if(
            self.db,
            victim["_id"],
            {"status": {"$in": DISPLACEABLE_STATUSES}},
            {
                "status": CANCELLED,
                "cancellation_reason": DISPLACEMENT_REASON,
                "displaced_by": str(displacer_id),
                "compensation_coins": coins if customer_id else 0,
                "previous_status": victim.get("status"),
                "cancelled_at": utcnow(),
            },
        )
        if not displaced:
            logger.warning(f"Victim booking {victim['_id']} changed before it could be displaced")
            raise LedgerConflict()

        booking_crud.log_booking_history(
            self.db, victim["_id"], "displaced", victim.get("status"), CANCELLED,
            actor=str(displacer_id), reason=DISPLACEMENT_REASON,
        )
        logger.info(f"Booking {victim['_id']} displaced by {displacer_id} for barber {victim['barber_id']}")

        if not customer_id:
            return 0

        self.wallet.credit(
            customer_id, coins,
            f"Compensation: {coins} Setkar Coins for booking cancelled by a higher priority booking",
            booking_id=victim["_id"],
        )
        self.notifier.notify(
            customer_id,
            "Booking Cancelled",
            f"Your booking with {provider.get('name', 'your barber')} has been cancelled due to a higher "
            f"priority booking. {coins} Setkar Coins have been added to your account.",
        )
        return coins

    def rollback(self, victim: dict, coins: int):
        """Undo a displacement whose displacing booking never got persisted"""
        restored = booking_crud.update_booking_if(
            self.db,
            victim["_id"],
            {"status": CANCELLED, "cancellation_reason": DISPLACEMENT_REASON},
            {"status": victim.get("status")},
            unset_fields=["cancellation_reason", "displaced_by", "previous_status", "cancelled_at"],
        )
        if restored:
            booking_crud.update_booking_if(self.db, victim["_id"], {}, {"compensation_coins": 0})
            booking_crud.log_booking_history(
                self.db, victim["_id"], "displacement_rolled_back", CANCELLED, victim.get("status"), actor=None,
            )
        if coins and victim.get("user_id"):
            self.wallet.debit(
                victim["user_id"], coins,
                "Compensation reversed: displacing booking was not created",
                booking_id=victim["_id"],
            )
        logger.warning(f"Rolled back displacement of booking {victim['_id']}")
