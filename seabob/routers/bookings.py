from fastapi import APIRouter, Depends, status, Body
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List, Optional
import logging

from ..database import get_db
from ..models.booking import Booking, BookingChannel
from ..schemas.booking import (
    BookingCreate, BookingResponse, ReservationResponse, CancelRequest,
    PaymentConfirm, RefundRequest, ReleaseResponse
)
from ..services.booking_lifecycle import (
    cancel_booking as cancel_booking_service,
    confirm_payment as confirm_payment_service,
    delete_booking as delete_booking_service,
    get_booking as get_booking_service,
    refund_booking as refund_booking_service,
)
from ..services.errors import BookingError
from ..services.expiry_sweep import BookingExpirySweeper
from ..services.payment_gateway import get_payment_gateway
from ..services.release import release_booking_stock
from ..services.reservation import BookingRequest, ItemRequest, ReservationService, ReservationResult
from ..utils.dependencies import get_actor_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Reservas"])

PARTNER_VIEW_ACTOR = "partner_view"


def to_reservation_response(result: ReservationResult) -> ReservationResponse:
    return ReservationResponse(
        booking_id=result.booking_id,
        reference=result.reference,
        access_token=result.access_token,
        status=result.status,
        expires_at=result.expires_at,
        total_price=result.total_price,
        commission_total=result.commission_total,
    )


def to_booking_request(data, channel: str, created_by: Optional[str] = None,
                       link_token: Optional[str] = None) -> BookingRequest:
    """Map a validated payload to the reservation input (staff and public forms)."""
    return BookingRequest(
        client_name=data.client_name,
        client_email=data.client_email,
        client_phone=data.client_phone,
        client_whatsapp=getattr(data, "client_whatsapp", None),
        start_date=data.start_date,
        end_date=data.end_date,
        items=[
            ItemRequest(
                product_id=item.product_id,
                quantity=item.quantity,
                rental_type=item.rental_type.value,
                duration=item.duration,
            )
            for item in data.items
        ],
        delivery_location=data.delivery_location,
        boat_name=data.boat_name,
        mooring_number=data.mooring_number,
        delivery_time=data.delivery_time,
        notes=data.notes,
        channel=channel,
        created_by=created_by,
        partner_id=getattr(data, "partner_id", None),
        partner_role=data.partner_role.value if getattr(data, "partner_role", None) else None,
        link_token=link_token,
        payment_bypassed=getattr(data, "payment_bypassed", False),
    )


# ========== Creation ==========

@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    booking_data: BookingCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """
    Create a booking from the staff / partner panel.

    Reserves stock for every day of the range atomically. With
    `payment_bypassed` the booking is confirmed at once and has no hold.
    """
    request = to_booking_request(booking_data, BookingChannel.STAFF.value, created_by=actor)
    result = ReservationService(db).create_booking(request)
    return to_reservation_response(result)


# ========== Reads ==========

@router.get("/partner/{partner_id}", response_model=List[BookingResponse])
def list_partner_bookings(partner_id: str, db: Session = Depends(get_db)):
    """
    Bookings attributed to a partner, newest first.
    Lapsed holds are expired on the way so the list never shows stale holds.
    """
    bookings = db.query(Booking).filter(
        Booking.partner_id == partner_id
    ).order_by(Booking.created_at.desc()).all()

    sweeper = BookingExpirySweeper(db)
    lapsed = [b.id for b in bookings if b.is_hold_candidate]
    refreshed = False
    for booking_id in lapsed:
        try:
            refreshed = sweeper.expire_if_needed(booking_id, actor=PARTNER_VIEW_ACTOR) or refreshed
        except (BookingError, SQLAlchemyError) as e:
            logger.error(f"Opportunistic expiry failed for booking {booking_id}: {e}")

    if refreshed:
        bookings = db.query(Booking).filter(
            Booking.partner_id == partner_id
        ).order_by(Booking.created_at.desc()).all()

    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return BookingResponse.model_validate(get_booking_service(db, booking_id))


# ========== Lifecycle ==========

@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    data: Optional[CancelRequest] = Body(None),
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Cancel a booking and return its stock (no-op if already cancelled)."""
    booking = cancel_booking_service(db, booking_id, actor, reason=data.reason if data else None)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/payment", response_model=BookingResponse)
def confirm_payment(
    booking_id: str,
    data: PaymentConfirm,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Record a payment received outside Stripe checkout."""
    booking = confirm_payment_service(db, booking_id, data.method.value, data.reference, actor)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    data: RefundRequest,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
    gateway=Depends(get_payment_gateway)
):
    """
    Refund a booking (manual record or Stripe refund), cancel it and
    return its stock.
    """
    booking = refund_booking_service(
        db,
        booking_id,
        amount=data.amount,
        method=data.method.value,
        reference=data.reference,
        reason=data.reason,
        actor=actor,
        gateway=gateway,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/release", response_model=ReleaseResponse)
def release_stock(
    booking_id: str,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """
    Return a cancelled or expired booking's stock to the ledger (retries a
    release that failed earlier). Safe to call repeatedly; 409 for live bookings.
    """
    released = release_booking_stock(db, booking_id, actor or "staff")
    return ReleaseResponse(booking_id=booking_id, released=released)


@router.delete("/{booking_id}")
def delete_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Hard delete. Stock still held by the booking is released in the same transaction."""
    delete_booking_service(db, booking_id, actor)
    return {"message": "Reserva eliminada", "booking_id": booking_id}
