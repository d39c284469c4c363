"""
Public (unauthenticated) endpoints: booking through a shared link and
the contract page reached with the booking's access token.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..models.booking import BookingChannel
from ..schemas.booking import PublicBookingCreate, ReservationResponse, ContractResponse, SignatureSubmit
from ..services.booking_lifecycle import get_booking_for_token, submit_signature
from ..services.reservation import ReservationService
from ..utils.rate_limiter import limiter, get_rate_limit
from .bookings import to_booking_request, to_reservation_response

router = APIRouter(prefix="/api/public", tags=["Público"])


@router.post("/links/{token}/bookings", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("public_booking"))
def create_public_booking(
    request: Request,
    token: str,
    booking_data: PublicBookingCreate,
    db: Session = Depends(get_db)
):
    """
    Book through a public link.

    Attribution (partner, creator) comes from the link, never from the
    payload. The booking is pending with a payment/signature hold.
    """
    booking_request = to_booking_request(
        booking_data, BookingChannel.PUBLIC_LINK.value, link_token=token
    )
    result = ReservationService(db).create_booking(booking_request)
    return to_reservation_response(result)


@router.get("/contracts/{booking_id}", response_model=ContractResponse)
@limiter.limit(get_rate_limit("contract_read"))
def get_contract(
    request: Request,
    booking_id: str,
    t: Optional[str] = Query(None, description="Booking access token"),
    db: Session = Depends(get_db)
):
    booking = get_booking_for_token(db, booking_id, t)
    return ContractResponse.model_validate(booking)


@router.post("/contracts/{booking_id}/sign", response_model=ContractResponse)
@limiter.limit(get_rate_limit("contract_sign"))
def sign_contract(
    request: Request,
    booking_id: str,
    data: SignatureSubmit,
    t: Optional[str] = Query(None, description="Booking access token"),
    db: Session = Depends(get_db)
):
    """Sign the rental contract. Payment must be received first."""
    booking = submit_signature(db, booking_id, t, data.signature, data.terms_accepted)
    return ContractResponse.model_validate(booking)
