"""
Stock Ledger Service

Per (day, product) counters of units made available by staff versus units
held by active bookings.

Writes to `reserved` only ever happen as SQL increments inside a transaction
owned by the reservation or release flow. Capacity (`available`) is a plain
overwrite set by staff.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models.stock_cell import StockCell, make_cell_id
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.timeutils import expand_days, utcnow
from .errors import InvalidStockValue, ProvisioningBatchTooLarge, TransactionConflictError

logger = logging.getLogger(__name__)


@dataclass
class StockSnapshot:
    """Point-in-time view of one cell. Unwritten cells read as zeros."""
    available: int = 0
    reserved: int = 0

    @property
    def free_units(self) -> int:
        return self.available - self.reserved


@dataclass
class ProvisionResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class StockLedger:
    """
    Service for the daily stock ledger.

    Key responsibilities:
    - Point reads of (day, product) cells
    - Atomic reserved increments/decrements (caller owns the transaction)
    - Staff capacity edits, single and bulk
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_cell(self, day: date, product_id: str, lock: bool = False) -> Optional[StockCell]:
        cell_id = make_cell_id(day, product_id)
        if lock:
            return acquire_row_lock(self.db, StockCell, StockCell.id == cell_id)
        return self.db.query(StockCell).filter(StockCell.id == cell_id).first()

    def _get_or_create(self, day: date, product_id: str, actor: Optional[str], refresh: bool = True) -> StockCell:
        """
        Get or create the cell for a day. Created cells start at zero.

        With refresh=False a cell already loaded in this transaction is reused
        as-is, so the version checked on write is the version that was read.
        """
        if refresh:
            cell = self._get_cell(day, product_id, lock=True)
        else:
            cell = self.db.get(StockCell, make_cell_id(day, product_id))

        if not cell:
            cell = StockCell(
                id=make_cell_id(day, product_id),
                day=day,
                product_id=product_id,
                available=0,
                reserved=0,
                updated_by=actor,
            )
            self.db.add(cell)
            # A concurrent creator surfaces here as IntegrityError (retried by the caller)
            self.db.flush()

        return cell

    def read_cell(self, day: date, product_id: str, lock: bool = False) -> StockSnapshot:
        """Current counters for a cell; zeros when it was never written."""
        cell = self._get_cell(day, product_id, lock=lock)
        if not cell:
            return StockSnapshot()
        return StockSnapshot(available=cell.available or 0, reserved=cell.reserved or 0)

    def adjust_reserved(self, day: date, product_id: str, delta: int, actor: Optional[str] = None) -> None:
        """
        Add `delta` (positive or negative) to `reserved`.

        Emits `reserved = reserved + :delta` guarded by the row version, so a
        concurrent writer makes the enclosing transaction fail and retry
        rather than lose an update. Does not commit.
        """
        if delta == 0:
            return
        cell = self._get_or_create(day, product_id, actor, refresh=False)
        cell.reserved = StockCell.reserved + delta
        cell.updated_by = actor
        cell.updated_at = utcnow()

    def set_available(self, day: date, product_id: str, value: int, actor: Optional[str] = None) -> StockSnapshot:
        """
        Set the capacity of one cell as its own committed write.

        Lowering capacity below the current `reserved` is accepted (staff may
        intentionally overbook); it is logged, never corrected.
        """
        if value is None or value < 0:
            raise InvalidStockValue()

        def work(db: Session) -> StockSnapshot:
            cell = self._get_or_create(day, product_id, actor)
            reserved = cell.reserved or 0
            if value < reserved:
                logger.warning(
                    f"Capacity for {cell.id} set to {value} below {reserved} reserved units "
                    f"(by {actor or 'unknown'})"
                )
            cell.available = value
            cell.updated_by = actor
            cell.updated_at = utcnow()
            return StockSnapshot(available=value, reserved=reserved)

        return run_in_transaction(
            self.db,
            work,
            max_attempts=settings.transaction_max_attempts,
            label=f"set_available {make_cell_id(day, product_id)}",
        )

    def provision_range(
        self,
        start: date,
        end: date,
        product_ids: Iterable[str],
        quantity: int,
        actor: Optional[str] = None
    ) -> ProvisionResult:
        """
        Set `available = quantity` for every (day, product) in the range.

        Each cell is an independent write; a failing cell is counted and the
        batch continues. Requests above the batch ceiling are rejected before
        anything is written.
        """
        if quantity is None or quantity < 0:
            raise InvalidStockValue()

        days = expand_days(start, end)
        products = list(dict.fromkeys(product_ids))
        total_cells = len(days) * len(products)

        limit = settings.stock_batch_limit
        if total_cells > limit:
            raise ProvisioningBatchTooLarge(total_cells, limit)

        result = ProvisionResult()
        for day in days:
            for product_id in products:
                result.attempted += 1
                try:
                    self.set_available(day, product_id, quantity, actor)
                    result.succeeded += 1
                except (SQLAlchemyError, TransactionConflictError) as e:
                    result.failed += 1
                    logger.error(f"Provisioning failed for {make_cell_id(day, product_id)}: {e}")

        logger.info(
            f"Provisioned {result.succeeded}/{result.attempted} cells "
            f"({start} - {end}, {len(products)} products, qty={quantity})"
        )
        return result

    def get_range(self, start: date, end: date, product_ids: Optional[List[str]] = None) -> List[dict]:
        """
        Get stock for a date range.
        Returns list of {day, product_id, available, reserved, free_units};
        unwritten cells of the requested products are filled with zeros.
        """
        days = expand_days(start, end)

        query = self.db.query(StockCell).filter(
            StockCell.day >= start,
            StockCell.day <= end
        )
        if product_ids:
            query = query.filter(StockCell.product_id.in_(product_ids))

        entry_map: Dict[str, StockCell] = {c.id: c for c in query.all()}

        if product_ids:
            products = list(dict.fromkeys(product_ids))
        else:
            products = sorted({c.product_id for c in entry_map.values()})

        result = []
        for day in days:
            for product_id in products:
                cell = entry_map.get(make_cell_id(day, product_id))
                available = cell.available if cell else 0
                reserved = cell.reserved if cell else 0
                result.append({
                    "day": day,
                    "product_id": product_id,
                    "available": available,
                    "reserved": reserved,
                    "free_units": available - reserved,
                })

        return result
