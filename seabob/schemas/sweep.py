from pydantic import BaseModel
from typing import List


class SweepResponse(BaseModel):
    success: bool = True
    checked: int
    expired: int
    released: int
    failed: int
    expired_ids: List[str] = []
