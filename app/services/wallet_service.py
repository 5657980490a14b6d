# app/services/wallet_service.py

from typing import Optional
from pymongo import ReturnDocument

from app.core.logger import logger
from app.crud.booking_crud import as_object_id
from app.utils.date_utils import utcnow

COIN_FIELD = "setkar_coins"


class WalletService:
    """
    Setkar Coin balance changes and the append-only transaction log.

    The balance never drops below zero: debits are clamped here rather than
    trusted to callers.
    """

    MAX_DEBIT_ATTEMPTS = 5

    def __init__(self, db):
        if db is None:
            raise ValueError("Database connection is required")
        self.db = db

    def balance(self, user_id) -> int:
        user = self.db.users.find_one({"_id": as_object_id(user_id)}, {COIN_FIELD: 1})
        if not user:
            return 0
        return user.get(COIN_FIELD) or 0

    def credit(self, user_id, amount: int, description: str, booking_id=None) -> Optional[int]:
        """Add coins; returns the new balance, or None when the user is gone"""
        if amount < 0:
            raise ValueError("Credit amount cannot be negative")
        user = self.db.users.find_one_and_update(
            {"_id": as_object_id(user_id)},
            {"$inc": {COIN_FIELD: amount}},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            logger.warning(f"Coin credit skipped, user {user_id} not found")
            return None
        if amount > 0:
            self._record(user_id, "credit", amount, description, booking_id)
        return user.get(COIN_FIELD, 0)

    def debit(self, user_id, amount: int, description: str, booking_id=None) -> Optional[int]:
        """Remove up to ``amount`` coins, flooring the balance at zero"""
        if amount < 0:
            raise ValueError("Debit amount cannot be negative")
        oid = as_object_id(user_id)

        for _ in range(self.MAX_DEBIT_ATTEMPTS):
            user = self.db.users.find_one({"_id": oid})
            if not user:
                logger.warning(f"Coin debit skipped, user {user_id} not found")
                return None
            current = user.get(COIN_FIELD)
            new_balance = max(0, (current or 0) - amount)
            result = self.db.users.update_one(
                {"_id": oid, COIN_FIELD: current},
                {"$set": {COIN_FIELD: new_balance}},
            )
            if result.matched_count == 1:
                removed = (current or 0) - new_balance
                if removed > 0:
                    self._record(user_id, "debit", removed, description, booking_id)
                return new_balance

        raise RuntimeError(f"Coin balance for user {user_id} kept changing during debit")

    def _record(self, user_id, kind: str, amount: int, description: str, booking_id=None):
        self.db.coin_transactions.insert_one({
            "user_id": str(user_id),
            "type": kind,
            "amount": amount,
            "description": description,
            "booking_id": str(booking_id) if booking_id else None,
            "created_at": utcnow(),
        })
        logger.info(f"Coin {kind} of {amount} for user {user_id}: {description}")
