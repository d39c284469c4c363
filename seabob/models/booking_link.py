from sqlalchemy import Column, String, Boolean, DateTime, Integer
from ..database import Base
from ..utils.timeutils import utcnow


class BookingLink(Base):
    """
    Shareable public booking link.

    Single-use links are consumed by the first successful reservation made
    through them; multi-use links only count reservations.
    """
    __tablename__ = "booking_links"

    token = Column(String(100), primary_key=True)

    active = Column(Boolean, default=True, nullable=False)
    single_use = Column(Boolean, default=False, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)

    # Counters
    visits = Column(Integer, default=0, nullable=False)
    reservations_created = Column(Integer, default=0, nullable=False)

    # Attribution for bookings created through the link
    created_by = Column(String(100), nullable=True)
    partner_id = Column(String(100), nullable=True)
    partner_role = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    last_access_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<BookingLink {self.token} active={self.active}>"
