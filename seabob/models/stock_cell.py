"""
Daily Stock Model

One row per (calendar day, product): how many units staff made available
and how many are held by active bookings.
The primary key is the composite "{YYYY-MM-DD}_{product_id}".
"""

from sqlalchemy import Column, String, Date, DateTime, Integer, Index, UniqueConstraint
from ..database import Base
from ..utils.timeutils import utcnow


def make_cell_id(day, product_id: str) -> str:
    return f"{day.strftime('%Y-%m-%d')}_{product_id}"


class StockCell(Base):
    """
    Stock ledger cell.

    - available: capacity configured by staff (absolute value)
    - reserved: sum of quantities of bookings that have not released stock
    - version: optimistic concurrency counter, bumped on every UPDATE
    """
    __tablename__ = "daily_stock"

    id = Column(String(100), primary_key=True)

    day = Column(Date, nullable=False)
    product_id = Column(String(36), nullable=False)

    available = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)

    updated_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('day', 'product_id', name='uq_daily_stock_day_product'),
        Index('ix_daily_stock_product_day', 'product_id', 'day'),
    )

    @property
    def free_units(self) -> int:
        return (self.available or 0) - (self.reserved or 0)

    def __repr__(self):
        return f"<StockCell {self.id} {self.reserved}/{self.available}>"
