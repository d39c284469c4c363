from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import re

from ..models.booking import RentalType, PartnerRole, PaymentMethod
from ..utils.timeutils import to_date


def _strip_markup(v):
    """Remove script tags and inline event handlers from free text."""
    if isinstance(v, str):
        v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
        v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
    return v


class BookingItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(..., ge=1, le=100)
    rental_type: RentalType = RentalType.DAY
    duration: int = Field(1, ge=1, le=365, description="Hours or days, per rental_type")


class PublicBookingCreate(BaseModel):
    """Booking submitted through a public link"""
    client_name: str = Field(..., min_length=1, max_length=150)
    client_email: str = Field(..., min_length=3, max_length=255)
    client_phone: Optional[str] = Field(None, max_length=30)
    start_date: date
    end_date: date
    items: List[BookingItemCreate] = Field(..., min_length=1)

    delivery_location: Optional[str] = Field(None, max_length=50)
    boat_name: Optional[str] = Field(None, max_length=100)
    mooring_number: Optional[str] = Field(None, max_length=50)
    delivery_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('client_name', 'notes', 'boat_name', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def normalize_dates(cls, v):
        return to_date(v) if v is not None else v

    @field_validator('client_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("Email no válido")
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError('La fecha de fin no puede ser anterior a la de inicio')
        return self


class BookingCreate(PublicBookingCreate):
    """Booking created from the staff / partner panel"""
    client_whatsapp: Optional[str] = Field(None, max_length=30)
    partner_id: Optional[str] = Field(None, max_length=100)
    partner_role: Optional[PartnerRole] = None
    payment_bypassed: bool = Field(False, description="Confirm without payment; no hold is set")


class ReservationResponse(BaseModel):
    booking_id: str
    reference: str
    access_token: str
    status: str
    expires_at: Optional[datetime] = None
    total_price: Decimal
    commission_total: Decimal


class BookingItemResponse(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    rental_type: str
    duration: int
    unit_price: Decimal
    commission_percent: Decimal

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: str
    reference: str
    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    start_date: date
    end_date: date
    items: List[BookingItemResponse] = []
    total_price: Decimal
    status: str
    channel: Optional[str] = None
    created_by: Optional[str] = None
    partner_id: Optional[str] = None
    partner_role: Optional[str] = None
    public_link_id: Optional[str] = None

    delivery_location: Optional[str] = None
    boat_name: Optional[str] = None
    mooring_number: Optional[str] = None
    delivery_time: Optional[str] = None
    notes: Optional[str] = None

    agreement_signed: bool = False
    payment_received: bool = False
    payment_method: Optional[str] = None
    refunded: bool = False
    refund_amount: Optional[Decimal] = None

    commission_total: Decimal = Decimal("0")
    commission_paid: Decimal = Decimal("0")

    expires_at: Optional[datetime] = None
    expired: bool = False
    stock_released: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContractResponse(BaseModel):
    """What the public contract page may see"""
    id: str
    reference: str
    client_name: str
    start_date: date
    end_date: date
    items: List[BookingItemResponse] = []
    total_price: Decimal
    status: str
    delivery_location: Optional[str] = None
    delivery_time: Optional[str] = None
    payment_received: bool = False
    agreement_signed: bool = False
    terms_accepted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentConfirm(BaseModel):
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=255)


class RefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=255)
    reason: Optional[str] = Field(None, max_length=500)


class SignatureSubmit(BaseModel):
    signature: str = Field(..., min_length=1, description="Signature image as data URL")
    terms_accepted: bool


class ReleaseResponse(BaseModel):
    booking_id: str
    released: bool
