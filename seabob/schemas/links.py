from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from ..models.booking import PartnerRole


class LinkCreate(BaseModel):
    single_use: bool = False
    partner_id: Optional[str] = Field(None, max_length=100)
    partner_role: Optional[PartnerRole] = None


class LinkResponse(BaseModel):
    token: str
    active: bool
    single_use: bool
    used: bool
    used_at: Optional[datetime] = None
    visits: int
    reservations_created: int
    created_by: Optional[str] = None
    partner_id: Optional[str] = None
    partner_role: Optional[str] = None
    created_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None

    class Config:
        from_attributes = True
