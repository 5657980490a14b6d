"""
Background worker for time-driven booking maintenance.

Usage:
    python -m app.worker

Every sweep interval it cancels bookings whose payment did not arrive
within the payment timeout, and once per local day it resets the barbers'
completed-today counters. The API process runs the same loop when
ENABLE_EXPIRY_SWEEP=true.
"""

import asyncio
from datetime import date
from typing import Optional

from app.core import config
from app.core.logger import get_module_logger
from app.crud import maintenance_crud, user_crud
from app.db.client import get_db, init_db
from app.services.booking_service import BookingService
from app.utils.date_utils import local_today

logger = get_module_logger("worker")


def run_expiry_sweep(db) -> int:
    expired = BookingService(db).expire_stale_bookings()
    if expired:
        logger.info(f"Cancelled {expired} bookings due to payment timeout")
    return expired


def run_daily_reset(db) -> int:
    reset = user_crud.reset_todays_bookings(db)
    logger.info(f"Successfully reset todays_bookings for {reset} barbers")
    return reset


def maybe_daily_reset(db, today: Optional[date] = None) -> bool:
    """
    Reset counters once per local calendar day. The last reset day lives in
    MongoDB, so a process started after midnight still runs the missed reset
    and concurrent processes do not repeat it.
    """
    today = today or local_today()
    if not maintenance_crud.claim_daily_reset(db, today):
        return False
    run_daily_reset(db)
    return True


async def worker_loop(db=None, interval_seconds: Optional[int] = None) -> None:
    db = get_db() if db is None else db
    interval_seconds = interval_seconds or config.EXPIRY_SWEEP_INTERVAL_SECONDS
    logger.info(f"Booking worker started (sweep every {interval_seconds}s, timezone {config.BOOKING_TIMEZONE})")

    while True:
        try:
            await asyncio.to_thread(run_expiry_sweep, db)
            await asyncio.to_thread(maybe_daily_reset, db)
        except Exception as e:
            logger.error(f"Error in booking maintenance cycle: {str(e)}")
        await asyncio.sleep(interval_seconds)


def main() -> None:
    init_db()
    asyncio.run(worker_loop())


if __name__ == "__main__":
    main()
