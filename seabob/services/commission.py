"""
Partner commissions.

How `dia` items count rental days differs between the two places the
business computes commission (booking checkout counts nights between the
booking dates; the older per-item helper uses each item's own duration).
Until that is settled both rules are available through `CommissionPolicy`.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import Booking, BookingStatus, RentalType, COMMISSION_PARTNER_ROLES
from ..models.commission_payment import CommissionPayment, CommissionPaymentAllocation
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from .errors import InvalidCommissionPayment

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DAY_COUNT_NIGHTS = "nights"
DAY_COUNT_ITEM_DURATION = "item_duration"

# Bookings whose commission is owed to the partner
COMMISSIONABLE_STATUSES = [BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value]


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def booking_nights(start: date, end: date) -> int:
    """Days between the booking dates, never less than one."""
    return max(1, (end - start).days)


def rental_units(rental_type: str, duration: Optional[int], start: date, end: date,
                 day_count_mode: str = DAY_COUNT_NIGHTS) -> int:
    """Billable units for one item: hours for `hora`, days for `dia`."""
    if rental_type == RentalType.HOUR.value:
        return max(1, duration or 1)
    if day_count_mode == DAY_COUNT_ITEM_DURATION:
        return max(1, duration or 1)
    return booking_nights(start, end)


def item_subtotal(unit_price, quantity: int, rental_type: str, duration: Optional[int],
                  start: date, end: date, day_count_mode: str = DAY_COUNT_NIGHTS) -> Decimal:
    units = rental_units(rental_type, duration, start, end, day_count_mode)
    return to_money(to_money(unit_price) * units * (quantity or 0))


@dataclass(frozen=True)
class CommissionPolicy:
    """
    Commission = sum over items of subtotal x commission_percent / 100.

    `day_count_mode` decides the day count of `dia` items:
    - "nights": end - start (min 1), shared by every item of the booking
    - "item_duration": the item's own `duration` (min 1)
    `hora` items always use max(1, duration) hours.
    """
    day_count_mode: str = DAY_COUNT_NIGHTS

    def __post_init__(self):
        if self.day_count_mode not in (DAY_COUNT_NIGHTS, DAY_COUNT_ITEM_DURATION):
            raise ValueError(f"Unknown day count mode: {self.day_count_mode}")

    def item_commission(self, item, start: date, end: date) -> Decimal:
        rate = to_money(item.commission_percent) / Decimal(100)
        if not rate:
            return Decimal("0.00")
        subtotal = item_subtotal(
            item.unit_price, item.quantity, item.rental_type, item.duration,
            start, end, self.day_count_mode
        )
        return to_money(subtotal * rate)

    def booking_commission(self, items: Iterable, start: date, end: date) -> Decimal:
        return to_money(sum(
            (self.item_commission(item, start, end) for item in items),
            Decimal("0.00")
        ))


def get_commission_policy() -> CommissionPolicy:
    return CommissionPolicy(day_count_mode=settings.commission_day_count_mode)


def compute_commission_total(items: Iterable, start: date, end: date, partner_role: Optional[str],
                             policy: Optional[CommissionPolicy] = None) -> Decimal:
    """Commission owed for a booking; zero unless a broker or agency brought it in."""
    if partner_role not in COMMISSION_PARTNER_ROLES:
        return Decimal("0.00")
    policy = policy or get_commission_policy()
    return policy.booking_commission(items, start, end)


# ========== Payouts ==========

def allocate_commission_payment(
    db: Session,
    partner_id: str,
    amount,
    method: Optional[str] = None,
    reference: Optional[str] = None,
    booking_ids: Optional[List[str]] = None,
    actor: Optional[str] = None,
    notes: Optional[str] = None
) -> CommissionPayment:
    """
    Record a payout and spread it greedily over the partner's bookings.

    Bookings are filled in the order listed (oldest first when no list is
    given): each one takes min(remaining, pending) before the rest spills to
    the next. The amount must be positive and no larger than the total
    pending commission of the selected bookings.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidCommissionPayment("El importe del pago debe ser mayor que cero.")

    def work(session: Session) -> CommissionPayment:
        if booking_ids:
            bookings = []
            for booking_id in dict.fromkeys(booking_ids):
                booking = acquire_row_lock(session, Booking, Booking.id == booking_id)
                if not booking or booking.partner_id != partner_id:
                    raise InvalidCommissionPayment(
                        f"La reserva {booking_id} no pertenece a este colaborador."
                    )
                bookings.append(booking)
        else:
            bookings = session.query(Booking).filter(
                Booking.partner_id == partner_id,
                Booking.status.in_(COMMISSIONABLE_STATUSES),
                Booking.commission_total > func.coalesce(Booking.commission_paid, 0)
            ).order_by(Booking.created_at).populate_existing().all()

        total_pending = sum((to_money(b.commission_pending) for b in bookings), Decimal("0.00"))
        if amount > total_pending:
            raise InvalidCommissionPayment(
                f"El importe ({amount}) supera la comisión pendiente ({total_pending})."
            )

        payment = CommissionPayment(
            partner_id=partner_id,
            amount=amount,
            method=method,
            reference=reference,
            notes=notes,
            created_by=actor,
        )
        session.add(payment)

        remaining = amount
        for booking in bookings:
            if remaining <= 0:
                break
            pending = to_money(booking.commission_pending)
            if pending <= 0:
                continue
            share = min(remaining, pending)
            booking.commission_paid = to_money(booking.commission_paid) + share
            payment.allocations.append(
                CommissionPaymentAllocation(booking_id=booking.id, amount=share)
            )
            remaining -= share

        return payment

    payment = run_in_transaction(
        db, work,
        max_attempts=settings.transaction_max_attempts,
        label=f"commission_payment {partner_id}"
    )
    logger.info(
        f"Commission payment {payment.id}: {amount} to partner {partner_id} "
        f"over {len(payment.allocations)} booking(s)"
    )
    return payment


def partner_commission_summary(db: Session, partner_id: str) -> dict:
    """Server-side totals of a partner's commission (confirmed and completed bookings)."""
    row = db.query(
        func.count(Booking.id),
        func.coalesce(func.sum(Booking.commission_total), 0),
        func.coalesce(func.sum(Booking.commission_paid), 0),
    ).filter(
        Booking.partner_id == partner_id,
        Booking.status.in_(COMMISSIONABLE_STATUSES)
    ).one()

    bookings_count, total, paid = row
    total = to_money(total)
    paid = to_money(paid)

    pending_bookings = db.query(Booking.id).filter(
        Booking.partner_id == partner_id,
        Booking.status.in_(COMMISSIONABLE_STATUSES),
        Booking.commission_total > func.coalesce(Booking.commission_paid, 0)
    ).order_by(Booking.created_at).all()

    return {
        "partner_id": partner_id,
        "bookings": bookings_count,
        "commission_total": total,
        "commission_paid": paid,
        "commission_pending": total - paid,
        "pending_booking_ids": [b.id for b in pending_bookings],
    }
