import uuid
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.timeutils import utcnow


class CommissionPayment(Base):
    """A payout to a partner, spread over one or more bookings."""
    __tablename__ = "commission_payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    partner_id = Column(String(100), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(30), nullable=True)
    reference = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    allocations = relationship(
        "CommissionPaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<CommissionPayment {self.partner_id} {self.amount}>"


class CommissionPaymentAllocation(Base):
    __tablename__ = "commission_payment_allocations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(String(36), ForeignKey("commission_payments.id", ondelete="CASCADE"), nullable=False, index=True)
    # Bookings may be hard-deleted later; the payout record stays
    booking_id = Column(String(36), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)

    payment = relationship("CommissionPayment", back_populates="allocations")
