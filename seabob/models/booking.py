import uuid
import enum
from sqlalchemy import Column, String, Date, Numeric, Text, ForeignKey, DateTime, Index, Boolean, Integer
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.timeutils import utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "pendiente"
    CONFIRMED = "confirmada"
    COMPLETED = "completada"
    CANCELLED = "cancelada"
    EXPIRED = "expirada"


class RentalType(str, enum.Enum):
    DAY = "dia"
    HOUR = "hora"


class BookingChannel(str, enum.Enum):
    """Where the booking request came from"""
    STAFF = "staff"              # Staff/partner panel
    PUBLIC_LINK = "public_link"  # Shareable public booking link


class PartnerRole(str, enum.Enum):
    BROKER = "broker"
    AGENCY = "agency"
    COLLABORATOR = "colaborador"


# Partners that earn commission on their bookings
COMMISSION_PARTNER_ROLES = {PartnerRole.BROKER.value, PartnerRole.AGENCY.value}


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    CASH = "efectivo"
    TRANSFER = "transferencia"
    CARD = "tarjeta"
    OTHER = "otro"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference = Column(String(30), nullable=False, index=True)  # RES-DDMMYY-NNN

    # Client
    client_name = Column(String(150), nullable=False)
    client_email = Column(String(255), nullable=False)
    client_phone = Column(String(30), nullable=True)
    client_whatsapp = Column(String(30), nullable=True)

    # Inclusive rental range
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Delivery details
    delivery_location = Column(String(50), nullable=True)
    boat_name = Column(String(100), nullable=True)
    mooring_number = Column(String(50), nullable=True)
    delivery_time = Column(String(5), nullable=True)  # HH:MM

    total_price = Column(Numeric(10, 2), default=0)
    status = Column(String(20), default=BookingStatus.PENDING.value, index=True)
    notes = Column(Text, nullable=True)

    # Attribution
    channel = Column(String(20), default=BookingChannel.STAFF.value)
    created_by = Column(String(100), nullable=True)
    partner_id = Column(String(100), nullable=True, index=True)
    partner_role = Column(String(20), nullable=True)
    is_direct_client = Column(Boolean, default=False)
    public_link_id = Column(String(100), ForeignKey("booking_links.token", ondelete="SET NULL"), nullable=True)

    # Public contract page
    access_token = Column(String(64), nullable=False)
    client_signature = Column(Text, nullable=True)  # data URL / base64 image
    terms_accepted = Column(Boolean, default=False)
    terms_accepted_at = Column(DateTime, nullable=True)
    agreement_signed = Column(Boolean, default=False)

    # Payment
    payment_received = Column(Boolean, default=False)
    payment_method = Column(String(30), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    payment_received_at = Column(DateTime, nullable=True)
    stripe_checkout_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)

    # Refund
    refunded = Column(Boolean, default=False)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_method = Column(String(30), nullable=True)
    refund_reference = Column(String(255), nullable=True)
    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    stripe_refund_id = Column(String(255), nullable=True)

    # Partner commission
    commission_total = Column(Numeric(10, 2), default=0)
    commission_paid = Column(Numeric(10, 2), default=0)

    # Hold: NULL when staff bypassed the payment requirement
    expires_at = Column(DateTime, nullable=True)
    expired = Column(Boolean, default=False)

    # Exactly-once stock release guard
    stock_released = Column(Boolean, default=False, nullable=False)
    stock_released_at = Column(DateTime, nullable=True)
    stock_released_by = Column(String(100), nullable=True)

    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    # Relationships
    items = relationship(
        "BookingItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingItem.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_booking_hold", "status", "expires_at"),
        Index("ix_booking_dates", "start_date", "end_date"),
    )

    @property
    def commission_pending(self):
        return (self.commission_total or 0) - (self.commission_paid or 0)

    @property
    def is_hold_candidate(self) -> bool:
        """Pending, time-boxed, not yet expired, neither paid nor signed."""
        return (
            self.status == BookingStatus.PENDING.value
            and self.expires_at is not None
            and not self.expired
            and not self.payment_received
            and not self.agreement_signed
        )

    def __repr__(self):
        return f"<Booking {self.reference} {self.status}>"


class BookingItem(Base):
    __tablename__ = "booking_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # submission order

    product_id = Column(String(36), nullable=False)
    product_name = Column(String(150), nullable=True)
    quantity = Column(Integer, nullable=False)
    rental_type = Column(String(10), default=RentalType.DAY.value)
    duration = Column(Integer, default=1)  # hours or days, per rental_type

    # Snapshots taken at booking time
    unit_price = Column(Numeric(10, 2), default=0)
    commission_percent = Column(Numeric(5, 2), default=0)

    booking = relationship("Booking", back_populates="items")

    def __repr__(self):
        return f"<BookingItem {self.product_id} x{self.quantity}>"
