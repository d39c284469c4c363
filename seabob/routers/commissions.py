from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..schemas.commission import CommissionPaymentCreate, CommissionPaymentResponse, PartnerCommissionSummary
from ..services.commission import allocate_commission_payment, partner_commission_summary
from ..utils.dependencies import get_actor_id

router = APIRouter(prefix="/api/commissions", tags=["Comisiones"])


@router.post("/payments", response_model=CommissionPaymentResponse, status_code=status.HTTP_201_CREATED)
def create_commission_payment(
    data: CommissionPaymentCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """
    Record a payout to a partner. The amount is allocated to the partner's
    bookings in order, filling each one's pending commission first.
    """
    payment = allocate_commission_payment(
        db,
        partner_id=data.partner_id,
        amount=data.amount,
        method=data.method,
        reference=data.reference,
        booking_ids=data.booking_ids,
        actor=actor,
        notes=data.notes,
    )
    return CommissionPaymentResponse.model_validate(payment)


@router.get("/partners/{partner_id}", response_model=PartnerCommissionSummary)
def get_partner_summary(partner_id: str, db: Session = Depends(get_db)):
    return PartnerCommissionSummary(**partner_commission_summary(db, partner_id))
