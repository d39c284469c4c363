from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List
from datetime import date

from ..utils.timeutils import to_date


class StockCellResponse(BaseModel):
    day: date
    product_id: str
    available: int
    reserved: int
    free_units: int


class StockUpdate(BaseModel):
    available: int = Field(..., ge=0)


class StockProvisionRequest(BaseModel):
    start_date: date
    end_date: date
    product_ids: List[str] = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def normalize_dates(cls, v):
        return to_date(v) if v is not None else v

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError('La fecha de fin no puede ser anterior a la de inicio')
        return self


class StockProvisionResponse(BaseModel):
    attempted: int
    succeeded: int
    failed: int
