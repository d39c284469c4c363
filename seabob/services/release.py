"""
Release: return a booking's reserved units to the stock ledger, exactly once.

Every termination path (expiry sweep, cancellation, refund, explicit staff
release) goes through `release_booking_stock`; hard delete calls
`return_booking_units` inside its own transaction. The `stock_released` flag
on the booking is read and flipped in the same transaction as the
decrements, so two racing callers cannot both release: the loser hits a
version conflict, retries, sees the flag and returns.

Only terminated bookings (`expirada`, `cancelada`) may release. A live
booking still holds its units, and `reserved` must keep counting them.
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import Booking, BookingStatus
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.logging_config import booking_logger
from ..utils.timeutils import utcnow
from .errors import BookingNotFoundError, BookingStateError
from .reservation import ItemRequest, build_requirements
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

RELEASABLE_STATUSES = (BookingStatus.EXPIRED.value, BookingStatus.CANCELLED.value)


def return_booking_units(session: Session, booking: Booking, actor: str) -> int:
    """
    Decrement every cell of a locked booking and flag it released.

    The caller owns the transaction and has already checked `stock_released`.
    Returns the number of cells touched.
    """
    ledger = StockLedger(session)
    requirements = build_requirements(
        booking.start_date,
        booking.end_date,
        [ItemRequest(product_id=i.product_id, quantity=i.quantity) for i in booking.items]
    )
    for req in requirements:
        ledger.adjust_reserved(req.day, req.product_id, -req.quantity, actor)

    booking.stock_released = True
    booking.stock_released_at = utcnow()
    booking.stock_released_by = actor
    return len(requirements)


def release_booking_stock(db: Session, booking_id: str, actor: Optional[str] = None) -> bool:
    """
    Decrement every (day, product) cell of a terminated booking and mark it released.

    Returns:
        True if this call released the stock, False if it was already released

    Raises:
        BookingNotFoundError: if the booking does not exist
        BookingStateError: if the booking is still live (not expired or cancelled)
    """
    actor = actor or SYSTEM_ACTOR

    def work(session: Session) -> Optional[int]:
        booking = acquire_row_lock(session, Booking, Booking.id == booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)

        if booking.stock_released:
            return None

        if booking.status not in RELEASABLE_STATUSES:
            raise BookingStateError(
                "Solo se puede liberar el stock de reservas canceladas o expiradas."
            )

        return return_booking_units(session, booking, actor)

    cells = run_in_transaction(
        db, work,
        max_attempts=settings.transaction_max_attempts,
        label=f"release {booking_id}"
    )

    if cells is None:
        logger.debug(f"Stock for booking {booking_id} already released, nothing to do")
        return False

    booking_logger.stock_released(booking_id, actor, cells)
    return True
