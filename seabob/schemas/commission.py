from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class CommissionPaymentCreate(BaseModel):
    partner_id: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    method: Optional[str] = Field(None, max_length=30)
    reference: Optional[str] = Field(None, max_length=255)
    booking_ids: Optional[List[str]] = Field(None, description="Fill order; oldest first when omitted")
    notes: Optional[str] = Field(None, max_length=1000)


class AllocationResponse(BaseModel):
    booking_id: str
    amount: Decimal

    class Config:
        from_attributes = True


class CommissionPaymentResponse(BaseModel):
    id: str
    partner_id: str
    amount: Decimal
    method: Optional[str] = None
    reference: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    allocations: List[AllocationResponse] = []

    class Config:
        from_attributes = True


class PartnerCommissionSummary(BaseModel):
    partner_id: str
    bookings: int
    commission_total: Decimal
    commission_paid: Decimal
    commission_pending: Decimal
    pending_booking_ids: List[str] = []
