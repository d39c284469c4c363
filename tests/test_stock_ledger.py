"""
Tests for the daily stock ledger

Test Coverage:
1. Unwritten cells read as zero
2. Capacity edits (single, below reserved, negative)
3. Bulk provisioning, per-cell failures and the batch ceiling
4. Range reads fill missing cells
"""

import pytest
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from seabob.models import StockCell, make_cell_id
from seabob.services.errors import InvalidStockValue, ProvisioningBatchTooLarge, TransactionConflictError
from seabob.services.stock_ledger import StockLedger


class TestStockCells:

    def test_cell_id_format(self):
        assert make_cell_id(date(2025, 6, 1), "seabob-f5") == "2025-06-01_seabob-f5"

    def test_unwritten_cell_reads_as_zero(self, db):
        snapshot = StockLedger(db).read_cell(date(2025, 6, 1), "seabob-f5")

        assert snapshot.available == 0
        assert snapshot.reserved == 0
        assert snapshot.free_units == 0

    def test_set_available_creates_cell(self, db):
        ledger = StockLedger(db)
        snapshot = ledger.set_available(date(2025, 6, 1), "seabob-f5", 4, "staff")

        assert snapshot.available == 4
        cell = db.get(StockCell, "2025-06-01_seabob-f5")
        assert cell.available == 4
        assert cell.reserved == 0
        assert cell.updated_by == "staff"

    def test_negative_capacity_rejected(self, db):
        with pytest.raises(InvalidStockValue):
            StockLedger(db).set_available(date(2025, 6, 1), "seabob-f5", -1)

    def test_capacity_below_reserved_is_kept(self, db, caplog):
        ledger = StockLedger(db)
        ledger.set_available(date(2025, 6, 1), "seabob-f5", 3)
        ledger.adjust_reserved(date(2025, 6, 1), "seabob-f5", 2)
        db.commit()

        snapshot = ledger.set_available(date(2025, 6, 1), "seabob-f5", 1, "staff")

        assert snapshot.available == 1
        assert snapshot.reserved == 2
        assert snapshot.free_units == -1
        assert "below 2 reserved" in caplog.text

    def test_adjust_reserved_increments_and_decrements(self, db):
        ledger = StockLedger(db)
        ledger.set_available(date(2025, 6, 1), "seabob-f5", 5)

        ledger.adjust_reserved(date(2025, 6, 1), "seabob-f5", 3)
        db.commit()
        ledger.adjust_reserved(date(2025, 6, 1), "seabob-f5", -1)
        db.commit()

        snapshot = ledger.read_cell(date(2025, 6, 1), "seabob-f5")
        assert snapshot.reserved == 2
        assert snapshot.free_units == 3


class TestProvisioning:

    def test_provision_range(self, db):
        result = StockLedger(db).provision_range(
            date(2025, 6, 1), date(2025, 6, 3), ["seabob-f5", "jetski-1"], 2, "staff"
        )

        assert result.to_dict() == {"attempted": 6, "succeeded": 6, "failed": 0}
        assert db.query(StockCell).count() == 6

    def test_provision_duplicate_products_counted_once(self, db):
        result = StockLedger(db).provision_range(
            date(2025, 6, 1), date(2025, 6, 1), ["seabob-f5", "seabob-f5"], 2
        )
        assert result.attempted == 1

    def test_batch_ceiling_rejects_before_writing(self, db, monkeypatch):
        from seabob.config import settings
        monkeypatch.setattr(settings, "stock_batch_limit", 5)

        with pytest.raises(ProvisioningBatchTooLarge) as exc_info:
            StockLedger(db).provision_range(
                date(2025, 6, 1), date(2025, 6, 3), ["a", "b"], 1
            )

        assert exc_info.value.total_cells == 6
        assert db.query(StockCell).count() == 0

    def test_reprovision_keeps_reserved(self, db):
        ledger = StockLedger(db)
        ledger.set_available(date(2025, 6, 1), "seabob-f5", 2)
        ledger.adjust_reserved(date(2025, 6, 1), "seabob-f5", 1)
        db.commit()

        ledger.provision_range(date(2025, 6, 1), date(2025, 6, 1), ["seabob-f5"], 4)

        snapshot = ledger.read_cell(date(2025, 6, 1), "seabob-f5")
        assert snapshot.available == 4
        assert snapshot.reserved == 1

    @pytest.mark.parametrize("error", [
        SQLAlchemyError("disk I/O error"),
        TransactionConflictError("set 20250602_jetski-1"),
    ])
    def test_failing_cell_is_counted_and_batch_continues(self, db, monkeypatch, error):
        real_set_available = StockLedger.set_available

        def flaky_set_available(self, day, product_id, available, actor=None):
            if day == date(2025, 6, 2) and product_id == "jetski-1":
                raise error
            return real_set_available(self, day, product_id, available, actor)

        monkeypatch.setattr(StockLedger, "set_available", flaky_set_available)

        result = StockLedger(db).provision_range(
            date(2025, 6, 1), date(2025, 6, 3), ["seabob-f5", "jetski-1"], 2, "staff"
        )

        assert result.to_dict() == {"attempted": 6, "succeeded": 5, "failed": 1}
        db.expire_all()
        assert db.query(StockCell).count() == 5
        assert db.get(StockCell, make_cell_id(date(2025, 6, 2), "jetski-1")) is None
        # Cells after the failure were still written
        assert db.get(StockCell, make_cell_id(date(2025, 6, 3), "jetski-1")).available == 2


class TestRangeRead:

    def test_get_range_fills_missing_cells(self, db):
        ledger = StockLedger(db)
        ledger.set_available(date(2025, 6, 2), "seabob-f5", 3)

        rows = ledger.get_range(date(2025, 6, 1), date(2025, 6, 3), ["seabob-f5"])

        assert [r["day"] for r in rows] == [date(2025, 6, 1), date(2025, 6, 2), date(2025, 6, 3)]
        assert [r["available"] for r in rows] == [0, 3, 0]
        assert all(r["reserved"] == 0 for r in rows)
