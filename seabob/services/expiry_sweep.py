"""
Booking Expiry Sweep

Terminates holds that lapsed without payment or signature:
- pending bookings with an expiry, not yet expired, neither paid nor signed
- whose expiry is in the past
are marked `expirada` and their stock is released.

Runs from the in-process scheduler, the cron endpoint and the standalone
worker, and opportunistically for single bookings on read. All of these may
overlap; the expiry mark is re-checked under lock and Release is idempotent.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models.booking import Booking, BookingStatus
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.logging_config import booking_logger
from ..utils.timeutils import utcnow
from .errors import BookingError
from .release import release_booking_stock

logger = logging.getLogger(__name__)

SWEEP_ACTOR = "system_cron"

# Terminal states whose stock must be back in the ledger
RELEASED_STATUSES = [BookingStatus.EXPIRED.value, BookingStatus.CANCELLED.value]


@dataclass
class SweepResult:
    checked: int = 0
    expired: int = 0
    released: int = 0
    failed: int = 0
    expired_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "expired": self.expired,
            "released": self.released,
            "failed": self.failed,
            "expired_ids": self.expired_ids,
        }


def hold_lapsed(booking: Booking, now: datetime) -> bool:
    """True when the booking is a hold candidate and its expiry is in the past."""
    return booking.is_hold_candidate and now > booking.expires_at


class BookingExpirySweeper:
    """
    Expires lapsed holds and returns their stock.

    Usage:
        result = BookingExpirySweeper(db).run()
    """

    def __init__(self, db: Session, batch_size: int = 500):
        self.db = db
        self.batch_size = batch_size

    def get_candidates(self) -> List[Booking]:
        """Pending, time-boxed, not expired, unpaid and unsigned bookings."""
        return self.db.query(Booking).filter(
            and_(
                Booking.status == BookingStatus.PENDING.value,
                Booking.expires_at.isnot(None),
                or_(Booking.expired == False, Booking.expired.is_(None)),  # noqa: E712
                or_(Booking.payment_received == False, Booking.payment_received.is_(None)),  # noqa: E712
                or_(Booking.agreement_signed == False, Booking.agreement_signed.is_(None)),  # noqa: E712
            )
        ).order_by(Booking.expires_at).limit(self.batch_size).all()

    def get_unreleased_terminal(self) -> List[str]:
        """Expired/cancelled bookings whose Release failed earlier."""
        rows = self.db.query(Booking.id).filter(
            Booking.status.in_(RELEASED_STATUSES),
            Booking.stock_released == False  # noqa: E712
        ).limit(self.batch_size).all()
        return [row.id for row in rows]

    def _mark_expired(self, booking_id: str, now: datetime) -> bool:
        """Flip the booking to `expirada` if the hold rule still holds under lock."""

        def work(db: Session) -> bool:
            booking = acquire_row_lock(db, Booking, Booking.id == booking_id)
            if not booking or not hold_lapsed(booking, now):
                return False
            booking.status = BookingStatus.EXPIRED.value
            booking.expired = True
            booking.updated_at = now
            return True

        return run_in_transaction(
            self.db, work,
            max_attempts=settings.transaction_max_attempts,
            label=f"expire {booking_id}"
        )

    def expire_if_needed(self, booking_id: str, now: Optional[datetime] = None,
                         actor: str = SWEEP_ACTOR) -> bool:
        """
        Apply the expiry rule to one booking.

        Returns True if this call expired it. Stock is released either way
        once the booking is expired.
        """
        now = now or utcnow()
        expired = self._mark_expired(booking_id, now)
        if expired:
            booking_logger.booking_status_changed(
                booking_id, BookingStatus.PENDING.value, BookingStatus.EXPIRED.value, actor
            )
            release_booking_stock(self.db, booking_id, actor)
        return expired

    def run(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep.

        Each booking is handled independently: a failure is logged, counted
        and the sweep moves on.
        """
        now = now or utcnow()
        result = SweepResult()

        candidates = self.get_candidates()
        result.checked = len(candidates)
        lapsed_ids = [b.id for b in candidates if hold_lapsed(b, now)]

        for booking_id in lapsed_ids:
            try:
                if not self._mark_expired(booking_id, now):
                    # Paid, signed or expired by someone else meanwhile
                    continue
                result.expired += 1
                result.expired_ids.append(booking_id)
                booking_logger.booking_status_changed(
                    booking_id, BookingStatus.PENDING.value, BookingStatus.EXPIRED.value, SWEEP_ACTOR
                )
            except (BookingError, SQLAlchemyError) as e:
                result.failed += 1
                logger.error(f"Error expiring booking {booking_id}: {e}")
                continue

            try:
                if release_booking_stock(self.db, booking_id, SWEEP_ACTOR):
                    result.released += 1
            except (BookingError, SQLAlchemyError) as e:
                result.failed += 1
                logger.error(f"Error releasing stock for expired booking {booking_id}: {e}")

        # Deferred releases from earlier failures
        for booking_id in self.get_unreleased_terminal():
            try:
                if release_booking_stock(self.db, booking_id, SWEEP_ACTOR):
                    result.released += 1
                    logger.info(f"Released pending stock of booking {booking_id}")
            except (BookingError, SQLAlchemyError) as e:
                result.failed += 1
                logger.error(f"Error releasing stock for booking {booking_id}: {e}")

        if result.expired or result.failed:
            logger.info(
                f"Expiry sweep: checked={result.checked} expired={result.expired} "
                f"released={result.released} failed={result.failed}"
            )

        return result
