from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from ..database import get_db
from ..schemas.stock import StockCellResponse, StockUpdate, StockProvisionRequest, StockProvisionResponse
from ..services.stock_ledger import StockLedger
from ..utils.dependencies import get_actor_id

router = APIRouter(prefix="/api/stock", tags=["Inventario"])

MAX_RANGE_DAYS = 366


def to_cell_response(day: date, product_id: str, snapshot) -> StockCellResponse:
    return StockCellResponse(
        day=day,
        product_id=product_id,
        available=snapshot.available,
        reserved=snapshot.reserved,
        free_units=snapshot.free_units,
    )


@router.get("", response_model=List[StockCellResponse])
def get_stock(
    start: date = Query(...),
    end: date = Query(...),
    product_ids: List[str] = Query(...),
    db: Session = Depends(get_db)
):
    """Availability per (day, product). Days never written read as zero."""
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Rango de fechas no válido")
    if (end - start).days + 1 > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"El rango máximo es de {MAX_RANGE_DAYS} días"
        )
    return [StockCellResponse(**row) for row in StockLedger(db).get_range(start, end, product_ids)]


@router.put("/{day}/{product_id}", response_model=StockCellResponse)
def set_available(
    day: date,
    product_id: str,
    data: StockUpdate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Set the fleet capacity for one product on one day."""
    snapshot = StockLedger(db).set_available(day, product_id, data.available, actor)
    return to_cell_response(day, product_id, snapshot)


@router.post("/provision", response_model=StockProvisionResponse)
def provision_stock(
    data: StockProvisionRequest,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Set the same capacity over a date range for several products."""
    result = StockLedger(db).provision_range(
        data.start_date, data.end_date, data.product_ids, data.quantity, actor
    )
    return StockProvisionResponse(**result.to_dict())
