"""
Booking lifecycle events after creation.

Payment and signature end the hold (the booking stops being an expiry
candidate) without touching stock. Cancellation, refund and hard delete
end the booking and return its stock through Release.
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models.booking import Booking, BookingStatus, PaymentMethod
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.logging_config import booking_logger
from ..utils.timeutils import utcnow
from .errors import (
    AlreadyRefundedError,
    AlreadySignedError,
    BookingError,
    BookingNotFoundError,
    BookingStateError,
    InvalidAccessTokenError,
    InvalidBookingRequest,
    InvalidRefundAmount,
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentRequiredError,
)
from .expiry_sweep import BookingExpirySweeper
from .payment_gateway import PaymentGateway, to_cents
from .release import release_booking_stock, return_booking_units

logger = logging.getLogger(__name__)

CONTRACT_ACTOR = "public_contract"
STRIPE_REFUND_ACTOR = "stripe_refund"

# States that no longer hold stock
CLOSED_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.EXPIRED.value)


def _run(db: Session, work, label: str):
    return run_in_transaction(
        db, work,
        max_attempts=settings.transaction_max_attempts,
        label=label
    )


def _lock_booking(db: Session, booking_id: str) -> Booking:
    booking = acquire_row_lock(db, Booking, Booking.id == booking_id)
    if not booking:
        raise BookingNotFoundError(booking_id)
    return booking


def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise BookingNotFoundError(booking_id)
    return booking


def _release_after(db: Session, booking_id: str, actor: str) -> None:
    """Release whose failure is logged; the sweep retries unreleased closed bookings."""
    try:
        release_booking_stock(db, booking_id, actor)
    except (BookingError, SQLAlchemyError) as e:
        logger.error(f"Error releasing stock for booking {booking_id}: {e}")


# ========== Cancellation ==========

def cancel_booking(db: Session, booking_id: str, actor: Optional[str] = None,
                   reason: Optional[str] = None) -> Booking:
    """Cancel a booking and return its stock. Cancelling twice is a no-op."""

    def work(session: Session) -> Optional[str]:
        booking = _lock_booking(session, booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            return None
        if booking.status == BookingStatus.COMPLETED.value:
            raise BookingStateError("Una reserva completada no se puede cancelar.")
        old_status = booking.status
        booking.status = BookingStatus.CANCELLED.value
        if reason:
            booking.notes = (booking.notes + "\n" if booking.notes else "") + f"[Cancelada] {reason}"
        booking.updated_at = utcnow()
        return old_status

    old_status = _run(db, work, f"cancel {booking_id}")
    if old_status is not None:
        booking_logger.booking_status_changed(
            booking_id, old_status, BookingStatus.CANCELLED.value, actor
        )

    _release_after(db, booking_id, actor or "staff")
    return get_booking(db, booking_id)


# ========== Payment ==========

def confirm_payment(db: Session, booking_id: str, method: str, reference: Optional[str] = None,
                    actor: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
    """
    Mark a booking as paid (manual confirmation by staff).

    Payment ends the hold; a pending booking becomes confirmed. Confirming an
    already paid booking changes nothing.
    """
    now = now or utcnow()
    if method not in {m.value for m in PaymentMethod}:
        raise InvalidBookingRequest("Método de pago no válido.")

    def work(session: Session) -> Optional[str]:
        booking = _lock_booking(session, booking_id)
        if booking.payment_received:
            return None
        if booking.status in CLOSED_STATUSES:
            raise BookingStateError("La reserva está cancelada o expirada.")
        old_status = booking.status
        booking.payment_received = True
        booking.payment_method = method
        booking.payment_reference = reference
        booking.payment_received_at = now
        if booking.status == BookingStatus.PENDING.value:
            booking.status = BookingStatus.CONFIRMED.value
            booking.confirmed_at = now
        booking.updated_at = now
        return old_status

    old_status = _run(db, work, f"payment {booking_id}")
    if old_status is not None:
        logger.info(f"Payment confirmed for booking {booking_id} ({method}) by {actor or 'unknown'}")
        if old_status == BookingStatus.PENDING.value:
            booking_logger.booking_status_changed(
                booking_id, old_status, BookingStatus.CONFIRMED.value, actor
            )
    return get_booking(db, booking_id)


def apply_checkout_completed(db: Session, session_obj: Any, now: Optional[datetime] = None) -> Optional[Booking]:
    """
    Handle Stripe `checkout.session.completed`.

    The booking id travels in the session metadata. A payment arriving after
    the hold ended is recorded, but the booking stays closed: its stock is
    already back in the ledger and staff must refund or rebook.
    """
    now = now or utcnow()
    metadata = session_obj.get("metadata") or {}
    booking_id = metadata.get("booking_id")
    if not booking_id:
        logger.warning(f"Checkout session {session_obj.get('id')} without booking_id metadata")
        return None

    payment_intent = session_obj.get("payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get("id")

    def work(session: Session) -> Optional[str]:
        booking = acquire_row_lock(session, Booking, Booking.id == booking_id)
        if not booking:
            return None
        old_status = booking.status
        booking.stripe_checkout_session_id = session_obj.get("id")
        if payment_intent:
            booking.stripe_payment_intent_id = payment_intent
        if not booking.payment_received:
            booking.payment_received = True
            booking.payment_method = PaymentMethod.STRIPE.value
            booking.payment_received_at = now
        if booking.status == BookingStatus.PENDING.value:
            booking.status = BookingStatus.CONFIRMED.value
            booking.confirmed_at = now
        booking.updated_at = now
        return old_status

    old_status = _run(db, work, f"checkout {booking_id}")
    if old_status is None:
        logger.warning(f"Checkout completed for unknown booking {booking_id}")
        return None

    if old_status in CLOSED_STATUSES:
        logger.warning(
            f"Booking {booking_id} paid through Stripe while {old_status}; stock is not reserved"
        )
    elif old_status == BookingStatus.PENDING.value:
        booking_logger.booking_status_changed(
            booking_id, old_status, BookingStatus.CONFIRMED.value, "stripe"
        )
    return get_booking(db, booking_id)


# ========== Public contract ==========

def _check_token(booking: Booking, token: Optional[str]) -> None:
    if not token or not booking.access_token or not secrets.compare_digest(
        str(token), str(booking.access_token)
    ):
        raise InvalidAccessTokenError()


def get_booking_for_token(db: Session, booking_id: str, token: Optional[str],
                          now: Optional[datetime] = None) -> Booking:
    """Public contract read; applies the expiry rule before answering."""
    booking = get_booking(db, booking_id)
    _check_token(booking, token)

    if booking.is_hold_candidate:
        BookingExpirySweeper(db).expire_if_needed(booking_id, now=now, actor=CONTRACT_ACTOR)
        booking = get_booking(db, booking_id)
    return booking


def submit_signature(db: Session, booking_id: str, token: Optional[str], signature: Optional[str],
                     terms_accepted: bool, now: Optional[datetime] = None) -> Booking:
    """
    Sign the contract through the public page.

    Requires the access token, accepted terms and a prior payment. A booking
    is signed once; expired or cancelled bookings cannot be signed.
    """
    now = now or utcnow()
    booking = get_booking_for_token(db, booking_id, token, now=now)

    def work(session: Session) -> Optional[str]:
        locked = _lock_booking(session, booking.id)
        _check_token(locked, token)
        if locked.agreement_signed:
            raise AlreadySignedError()
        if locked.status in CLOSED_STATUSES:
            raise BookingStateError("La reserva está cancelada o expirada.")
        if not locked.payment_received:
            raise PaymentRequiredError()
        if not terms_accepted or not signature:
            raise InvalidBookingRequest("Debes aceptar los términos y firmar el contrato.")
        old_status = locked.status
        locked.client_signature = signature
        locked.terms_accepted = True
        locked.terms_accepted_at = now
        locked.agreement_signed = True
        if locked.status == BookingStatus.PENDING.value:
            locked.status = BookingStatus.CONFIRMED.value
            locked.confirmed_at = locked.confirmed_at or now
        locked.updated_at = now
        return old_status

    old_status = _run(db, work, f"signature {booking_id}")
    logger.info(f"Contract signed for booking {booking_id}")
    if old_status == BookingStatus.PENDING.value:
        booking_logger.booking_status_changed(
            booking_id, old_status, BookingStatus.CONFIRMED.value, CONTRACT_ACTOR
        )
    return get_booking(db, booking_id)


# ========== Refund ==========

def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRefundAmount(amount)
    if not value.is_finite():
        raise InvalidRefundAmount(amount)
    return value


def refund_booking(
    db: Session,
    booking_id: str,
    amount,
    method: str,
    reference: Optional[str] = None,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None
) -> Booking:
    """
    Refund a booking, cancel it and return its stock.

    For Stripe the monetary refund happens first (idempotency key
    `refund_{booking_id}_{cents}`); if the gateway fails nothing is written.
    After a successful gateway refund, a failing Release is only logged.
    """
    now = now or utcnow()
    booking = get_booking(db, booking_id)

    if booking.refunded:
        raise AlreadyRefundedError()

    value = _parse_amount(amount)
    total = Decimal(str(booking.total_price or 0))
    if value <= 0 or value > total:
        raise InvalidRefundAmount(value, total)

    if method not in {m.value for m in PaymentMethod}:
        raise InvalidBookingRequest("Método de reembolso no válido.")

    refund_id = None
    payment_intent_id = booking.stripe_payment_intent_id
    if method == PaymentMethod.STRIPE.value:
        if gateway is None:
            raise PaymentGatewayNotConfigured()
        if not booking.payment_received:
            raise BookingStateError("La reserva no está marcada como pagada.")
        if not payment_intent_id and booking.stripe_checkout_session_id:
            payment_intent_id = gateway.resolve_payment_intent(booking.stripe_checkout_session_id)
        if not payment_intent_id:
            raise BookingStateError("No hay un pago de Stripe asociado a esta reserva.")

        outcome = gateway.refund(
            payment_intent_id,
            value,
            idempotency_key=f"refund_{booking_id}_{to_cents(value)}",
            metadata={"booking_id": booking_id},
        )
        if not outcome.succeeded:
            logger.error(f"Stripe refund for booking {booking_id} not successful ({outcome.status})")
            raise PaymentGatewayError(provider_message=outcome.status)
        refund_id = outcome.refund_id
        reference = reference or refund_id

    def work(session: Session) -> Optional[str]:
        locked = _lock_booking(session, booking_id)
        if locked.refunded:
            # Concurrent refund won; the gateway idempotency key kept it single
            return None
        old_status = locked.status
        locked.refunded = True
        locked.refund_amount = value
        locked.refund_method = method
        locked.refund_reference = reference
        locked.refund_reason = reason or (
            "Reembolso procesado en Stripe" if method == PaymentMethod.STRIPE.value else None
        )
        locked.refunded_at = now
        if refund_id:
            locked.stripe_refund_id = refund_id
        if payment_intent_id and payment_intent_id != locked.stripe_payment_intent_id:
            locked.stripe_payment_intent_id = payment_intent_id
        locked.status = BookingStatus.CANCELLED.value
        locked.updated_at = now
        return old_status

    if method == PaymentMethod.STRIPE.value:
        try:
            old_status = _run(db, work, f"refund {booking_id}")
        except (BookingError, SQLAlchemyError) as e:
            # Money already went back; leave a trace for manual reconciliation
            logger.error(
                f"Stripe refund {refund_id} issued but booking {booking_id} not updated: {e}"
            )
            raise
    else:
        old_status = _run(db, work, f"refund {booking_id}")

    if old_status is None:
        raise AlreadyRefundedError()

    logger.info(f"Refund of {value} for booking {booking_id} ({method}) by {actor or 'unknown'}")
    if old_status != BookingStatus.CANCELLED.value:
        booking_logger.booking_status_changed(
            booking_id, old_status, BookingStatus.CANCELLED.value, actor
        )

    release_actor = STRIPE_REFUND_ACTOR if method == PaymentMethod.STRIPE.value else (actor or "staff")
    _release_after(db, booking_id, release_actor)
    return get_booking(db, booking_id)


# ========== Hard delete ==========

def delete_booking(db: Session, booking_id: str, actor: Optional[str] = None) -> bool:
    """
    Hard delete. Stock still held by the booking is returned in the same
    transaction as the delete, so a failed delete leaves the ledger untouched.
    """
    actor = actor or "staff"

    def work(session: Session) -> Optional[int]:
        booking = _lock_booking(session, booking_id)
        cells = None
        if not booking.stock_released:
            cells = return_booking_units(session, booking, actor)
        session.delete(booking)
        return cells

    cells = _run(db, work, f"delete {booking_id}")
    if cells is not None:
        booking_logger.stock_released(booking_id, actor, cells)
    logger.info(f"Booking {booking_id} deleted by {actor}")
    return True
