"""
Tests for booking lifecycle events

Test Coverage:
1. Cancellation releases stock once
2. Manual payment ends the hold without releasing stock
3. Contract signature rules (token, payment first, once only)
4. Refunds: manual and Stripe (fake gateway), amount validation
5. Stripe checkout completion
6. Hard delete releases first
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy.exc import SQLAlchemyError

from seabob.models import Booking, BookingStatus
from seabob.services.booking_lifecycle import (
    apply_checkout_completed,
    cancel_booking,
    confirm_payment,
    delete_booking,
    get_booking_for_token,
    refund_booking,
    submit_signature,
)
from seabob.services.errors import (
    AlreadyRefundedError,
    AlreadySignedError,
    BookingNotFoundError,
    BookingStateError,
    InvalidAccessTokenError,
    InvalidBookingRequest,
    InvalidRefundAmount,
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentRequiredError,
)
from seabob.services.expiry_sweep import BookingExpirySweeper
from seabob.services.payment_gateway import RefundOutcome, to_cents
from seabob.services.reservation import ReservationService
from seabob.services.stock_ledger import StockLedger

NOW = datetime(2025, 6, 1, 10, 0, 0)
SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


def reserved_on(db, day=date(2025, 6, 1), product_id="seabob-f5"):
    db.expire_all()
    return StockLedger(db).read_cell(day, product_id).reserved


def load(db, booking_id):
    db.expire_all()
    return db.get(Booking, booking_id)


@pytest.fixture
def booking(db, stocked, make_request):
    """Pending public-style booking: 2025-06-01..03, 1 unit, total 200."""
    return ReservationService(db).create_booking(make_request(quantity=1), now=NOW)


@pytest.fixture
def gateway():
    fake = MagicMock()
    fake.refund.return_value = RefundOutcome(succeeded=True, refund_id="re_123", status="succeeded")
    fake.resolve_payment_intent.return_value = "pi_resolved"
    return fake


def pay_with_stripe(db, booking_id, payment_intent="pi_123"):
    return apply_checkout_completed(db, {
        "id": "cs_test_1",
        "payment_intent": payment_intent,
        "metadata": {"booking_id": booking_id},
    }, now=NOW)


class TestCancellation:

    def test_cancel_releases_stock(self, db, booking):
        cancelled = cancel_booking(db, booking.booking_id, "staff-maria", reason="Cliente no viene")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.stock_released is True
        assert "[Cancelada] Cliente no viene" in cancelled.notes
        assert reserved_on(db) == 0

    def test_cancel_twice_is_noop(self, db, booking):
        cancel_booking(db, booking.booking_id)
        again = cancel_booking(db, booking.booking_id)

        assert again.status == BookingStatus.CANCELLED.value
        assert reserved_on(db) == 0

    def test_cancel_expired_booking_does_not_double_release(self, db, booking):
        BookingExpirySweeper(db).run(now=NOW + timedelta(hours=2))
        cancel_booking(db, booking.booking_id)

        assert reserved_on(db) == 0

    def test_completed_booking_cannot_be_cancelled(self, db, booking):
        b = load(db, booking.booking_id)
        b.status = BookingStatus.COMPLETED.value
        db.commit()

        with pytest.raises(BookingStateError):
            cancel_booking(db, booking.booking_id)

    def test_cancel_unknown_booking(self, db):
        with pytest.raises(BookingNotFoundError):
            cancel_booking(db, "missing")


class TestPayment:

    def test_manual_payment_confirms_and_keeps_stock(self, db, booking):
        paid = confirm_payment(db, booking.booking_id, "transferencia", "TRF-1", "staff", now=NOW)

        assert paid.status == BookingStatus.CONFIRMED.value
        assert paid.payment_received is True
        assert paid.payment_method == "transferencia"
        assert paid.is_hold_candidate is False
        assert reserved_on(db) == 1

        sweep = BookingExpirySweeper(db).run(now=NOW + timedelta(days=1))
        assert sweep.expired == 0

    def test_unknown_method_rejected(self, db, booking):
        with pytest.raises(InvalidBookingRequest):
            confirm_payment(db, booking.booking_id, "bitcoin")

    def test_expired_booking_cannot_be_paid_manually(self, db, booking):
        BookingExpirySweeper(db).run(now=NOW + timedelta(hours=2))

        with pytest.raises(BookingStateError):
            confirm_payment(db, booking.booking_id, "efectivo")

    def test_stripe_checkout_marks_paid(self, db, booking):
        paid = pay_with_stripe(db, booking.booking_id)

        assert paid.status == BookingStatus.CONFIRMED.value
        assert paid.payment_method == "stripe"
        assert paid.stripe_payment_intent_id == "pi_123"
        assert paid.stripe_checkout_session_id == "cs_test_1"

    def test_stripe_checkout_after_expiry_keeps_booking_closed(self, db, booking):
        BookingExpirySweeper(db).run(now=NOW + timedelta(hours=2))

        paid = pay_with_stripe(db, booking.booking_id)

        assert paid.status == BookingStatus.EXPIRED.value
        assert paid.payment_received is True
        assert reserved_on(db) == 0

    def test_checkout_without_booking_metadata_is_ignored(self, db):
        assert apply_checkout_completed(db, {"id": "cs_x", "metadata": {}}) is None


class TestSignature:

    def test_token_required(self, db, booking):
        with pytest.raises(InvalidAccessTokenError):
            get_booking_for_token(db, booking.booking_id, "wrong-token", now=NOW)
        with pytest.raises(InvalidAccessTokenError):
            get_booking_for_token(db, booking.booking_id, None, now=NOW)

    def test_payment_required_before_signing(self, db, booking):
        with pytest.raises(PaymentRequiredError):
            submit_signature(db, booking.booking_id, booking.access_token, SIGNATURE, True, now=NOW)

    def test_sign_after_payment(self, db, booking):
        confirm_payment(db, booking.booking_id, "tarjeta", now=NOW)

        signed = submit_signature(db, booking.booking_id, booking.access_token, SIGNATURE, True, now=NOW)

        assert signed.agreement_signed is True
        assert signed.terms_accepted_at == NOW
        assert signed.client_signature == SIGNATURE

    def test_cannot_sign_twice(self, db, booking):
        confirm_payment(db, booking.booking_id, "tarjeta", now=NOW)
        submit_signature(db, booking.booking_id, booking.access_token, SIGNATURE, True, now=NOW)

        with pytest.raises(AlreadySignedError):
            submit_signature(db, booking.booking_id, booking.access_token, SIGNATURE, True, now=NOW)

    def test_terms_must_be_accepted(self, db, booking):
        confirm_payment(db, booking.booking_id, "tarjeta", now=NOW)

        with pytest.raises(InvalidBookingRequest):
            submit_signature(db, booking.booking_id, booking.access_token, SIGNATURE, False, now=NOW)

    def test_contract_read_expires_lapsed_hold(self, db, booking):
        read = get_booking_for_token(
            db, booking.booking_id, booking.access_token, now=NOW + timedelta(hours=2)
        )

        assert read.status == BookingStatus.EXPIRED.value
        assert read.stock_released is True

    def test_expired_booking_cannot_be_signed(self, db, booking):
        with pytest.raises(BookingStateError):
            submit_signature(
                db, booking.booking_id, booking.access_token, SIGNATURE, True,
                now=NOW + timedelta(hours=2)
            )


class TestRefund:

    def test_manual_refund_cancels_and_releases(self, db, booking):
        refunded = refund_booking(
            db, booking.booking_id, Decimal("50"), "efectivo", reason="Mal tiempo", actor="staff", now=NOW
        )

        assert refunded.refunded is True
        assert refunded.refund_amount == Decimal("50.00")
        assert refunded.status == BookingStatus.CANCELLED.value
        assert refunded.stock_released_by == "staff"
        assert reserved_on(db) == 0

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("200.01"), "abc"])
    def test_amount_must_be_within_total(self, db, booking, amount):
        with pytest.raises(InvalidRefundAmount):
            refund_booking(db, booking.booking_id, amount, "efectivo")

        assert load(db, booking.booking_id).refunded is False

    def test_full_amount_allowed(self, db, booking):
        refunded = refund_booking(db, booking.booking_id, Decimal("200.00"), "efectivo")
        assert refunded.refund_amount == Decimal("200.00")

    def test_second_refund_rejected(self, db, booking):
        refund_booking(db, booking.booking_id, Decimal("50"), "efectivo")

        with pytest.raises(AlreadyRefundedError):
            refund_booking(db, booking.booking_id, Decimal("50"), "efectivo")

    def test_stripe_refund_uses_idempotency_key(self, db, booking, gateway):
        pay_with_stripe(db, booking.booking_id)

        refunded = refund_booking(
            db, booking.booking_id, Decimal("120.50"), "stripe", gateway=gateway, now=NOW
        )

        gateway.refund.assert_called_once_with(
            "pi_123",
            Decimal("120.50"),
            idempotency_key=f"refund_{booking.booking_id}_12050",
            metadata={"booking_id": booking.booking_id},
        )
        assert refunded.stripe_refund_id == "re_123"
        assert refunded.refund_reference == "re_123"
        assert refunded.stock_released_by == "stripe_refund"
        assert reserved_on(db) == 0

    def test_stripe_refund_resolves_intent_from_session(self, db, booking, gateway):
        pay_with_stripe(db, booking.booking_id, payment_intent=None)

        refund_booking(db, booking.booking_id, Decimal("10"), "stripe", gateway=gateway)

        gateway.resolve_payment_intent.assert_called_once_with("cs_test_1")
        assert gateway.refund.call_args[0][0] == "pi_resolved"
        assert load(db, booking.booking_id).stripe_payment_intent_id == "pi_resolved"

    def test_stripe_failure_leaves_booking_unchanged(self, db, booking, gateway):
        pay_with_stripe(db, booking.booking_id)
        gateway.refund.side_effect = PaymentGatewayError(provider_message="card_declined")

        with pytest.raises(PaymentGatewayError):
            refund_booking(db, booking.booking_id, Decimal("10"), "stripe", gateway=gateway)

        b = load(db, booking.booking_id)
        assert b.refunded is False
        assert b.status == BookingStatus.CONFIRMED.value
        assert reserved_on(db) == 1

    def test_stripe_refund_requires_payment(self, db, booking, gateway):
        with pytest.raises(BookingStateError):
            refund_booking(db, booking.booking_id, Decimal("10"), "stripe", gateway=gateway)
        gateway.refund.assert_not_called()

    def test_stripe_refund_without_gateway(self, db, booking):
        pay_with_stripe(db, booking.booking_id)

        with pytest.raises(PaymentGatewayNotConfigured):
            refund_booking(db, booking.booking_id, Decimal("10"), "stripe", gateway=None)

    def test_cents_rounding(self):
        assert to_cents(Decimal("120.505")) == 12051
        assert to_cents("0.1") == 10


class TestDelete:

    def test_delete_releases_then_removes(self, db, booking):
        assert delete_booking(db, booking.booking_id, "staff") is True

        assert load(db, booking.booking_id) is None
        assert reserved_on(db) == 0

    def test_delete_cancelled_booking_keeps_ledger_consistent(self, db, booking):
        cancel_booking(db, booking.booking_id)
        delete_booking(db, booking.booking_id)

        assert reserved_on(db) == 0

    def test_failed_delete_keeps_stock_held(self, db, booking, monkeypatch):
        def broken_delete(instance):
            raise SQLAlchemyError("delete failed")

        monkeypatch.setattr(db, "delete", broken_delete)

        with pytest.raises(SQLAlchemyError):
            delete_booking(db, booking.booking_id, "staff")

        monkeypatch.undo()
        stored = load(db, booking.booking_id)
        assert stored is not None
        assert stored.stock_released is False
        assert reserved_on(db) == 1
