"""
Stripe webhook receiver.

Only `checkout.session.completed` changes state; other event types are
acknowledged and ignored so Stripe does not retry them.
"""

import logging
import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..services.booking_lifecycle import apply_checkout_completed
from ..services.payment_gateway import get_payment_gateway
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.timeutils import to_datetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe"])

CHECKOUT_COMPLETED = "checkout.session.completed"


@router.post("/webhook")
@limiter.limit(get_rate_limit("webhook"))
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway)
):
    if gateway is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe no está configurado")
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Falta la firma del webhook")

    payload = await request.body()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except ValueError:
        logger.warning("Stripe webhook with malformed payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload no válido")
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Firma no válida")

    event_type = event["type"]
    if event_type == CHECKOUT_COMPLETED:
        session_obj = event["data"]["object"]
        # Stripe stamps events in epoch seconds
        paid_at = to_datetime(event["created"]) if event.get("created") else None
        await run_in_threadpool(apply_checkout_completed, db, session_obj, paid_at)
    else:
        logger.debug(f"Ignoring Stripe event {event_type}")

    return {"received": True}
