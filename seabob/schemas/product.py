from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from ..models.product import ProductType


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    product_type: ProductType = ProductType.SEABOB
    daily_price: Decimal = Field(Decimal("0"), ge=0)
    hourly_price: Decimal = Field(Decimal("0"), ge=0)
    commission_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    is_active: bool = True


class ProductCreate(ProductBase):
    # Stable slug ("seabob-f5"); a UUID is generated when omitted
    id: Optional[str] = Field(None, min_length=1, max_length=36, pattern=r"^[A-Za-z0-9_-]+$")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    product_type: Optional[ProductType] = None
    daily_price: Optional[Decimal] = Field(None, ge=0)
    hourly_price: Optional[Decimal] = Field(None, ge=0)
    commission_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class ProductResponse(ProductBase):
    id: str
    product_type: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
