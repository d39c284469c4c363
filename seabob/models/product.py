import uuid
import enum
from sqlalchemy import Column, String, Numeric, Boolean, DateTime, Text
from ..database import Base
from ..utils.timeutils import utcnow


class ProductType(str, enum.Enum):
    SEABOB = "seabob"
    JETSKI = "jetski"
    SERVICE = "servicio"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    product_type = Column(String(20), default=ProductType.SEABOB.value)

    daily_price = Column(Numeric(10, 2), default=0)
    hourly_price = Column(Numeric(10, 2), default=0)
    # Partner commission (%) snapshotted onto booking items at booking time
    commission_percent = Column(Numeric(5, 2), default=0)

    is_active = Column(Boolean, default=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Product {self.name}>"
