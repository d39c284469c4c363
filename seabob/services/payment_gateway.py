"""
Payment gateway adapter.

The booking core only needs three things from the payment provider:
issue a refund, resolve a checkout session to its payment intent, and
verify webhook payloads. `StripeGateway` implements them with the stripe
SDK; tests pass their own object with the same methods.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Protocol

import stripe

from ..config import settings
from .errors import PaymentGatewayError

logger = logging.getLogger(__name__)


def to_cents(amount) -> int:
    """Euros to integer cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class RefundOutcome:
    succeeded: bool
    refund_id: Optional[str] = None
    status: Optional[str] = None


class PaymentGateway(Protocol):
    def refund(self, payment_intent_id: str, amount, idempotency_key: str,
               metadata: Optional[Dict[str, str]] = None) -> RefundOutcome:
        ...

    def resolve_payment_intent(self, checkout_session_id: str) -> Optional[str]:
        ...

    def construct_event(self, payload: bytes, signature: str) -> Any:
        ...


class StripeGateway:
    """Stripe implementation; every call carries its own API key."""

    def __init__(self, secret_key: str, webhook_secret: str = "", currency: str = "eur"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def refund(self, payment_intent_id: str, amount, idempotency_key: str,
               metadata: Optional[Dict[str, str]] = None) -> RefundOutcome:
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=to_cents(amount),
                metadata=metadata or {},
                idempotency_key=idempotency_key,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {payment_intent_id}: {e.user_message or e}")
            raise PaymentGatewayError(provider_message=str(e))

        status = getattr(refund, "status", None)
        return RefundOutcome(
            succeeded=status in ("succeeded", "pending"),
            refund_id=refund.id,
            status=status,
        )

    def resolve_payment_intent(self, checkout_session_id: str) -> Optional[str]:
        try:
            session = stripe.checkout.Session.retrieve(checkout_session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error(f"Could not retrieve checkout session {checkout_session_id}: {e}")
            raise PaymentGatewayError(provider_message=str(e))

        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, str):
            return payment_intent
        if payment_intent is not None:
            return payment_intent.get("id")
        return None

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """
        Verify a webhook payload.

        Raises:
            ValueError: malformed payload
            stripe.SignatureVerificationError: bad signature
        """
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)


def get_payment_gateway() -> Optional[StripeGateway]:
    """FastAPI dependency: the configured Stripe gateway, or None without a key."""
    if not settings.stripe_configured:
        return None
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.payment_currency,
    )
