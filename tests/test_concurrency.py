"""
Concurrency Tests for Overbooking Prevention

Tests cover:
- Row lock helper dialect behaviour
- Transaction retry on version conflicts
- Concurrent reservations never oversell a cell
- Concurrent submissions on a single-use link create one booking
- Concurrent releases return stock once
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from unittest.mock import MagicMock

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from seabob.models import Booking, BookingLink, BookingStatus, StockCell
from seabob.services.errors import (
    BookingError,
    InvalidBookingRequest,
    LinkAlreadyUsedError,
    TransactionConflictError,
)
from seabob.services.release import release_booking_stock
from seabob.services.reservation import ReservationService
from seabob.services.stock_ledger import StockLedger
from seabob.utils.db_helpers import acquire_row_lock, is_retryable_error, run_in_transaction

NOW = datetime(2025, 6, 1, 10, 0, 0)


class TestRowLock:

    def _query_chain(self, db):
        query_mock = MagicMock()
        db.query.return_value = query_mock
        locked = query_mock.filter.return_value.populate_existing.return_value
        return locked

    def test_acquire_row_lock_uses_for_update_on_postgres(self):
        db = MagicMock()
        db.bind.dialect.name = 'postgresql'
        locked = self._query_chain(db)

        acquire_row_lock(db, StockCell, StockCell.id == 'x')

        locked.with_for_update.assert_called_once_with()

    def test_acquire_row_lock_nowait_on_postgres(self):
        db = MagicMock()
        db.bind.dialect.name = 'postgresql'
        locked = self._query_chain(db)

        acquire_row_lock(db, StockCell, StockCell.id == 'x', nowait=True)

        locked.with_for_update.assert_called_once_with(nowait=True)

    def test_acquire_row_lock_skips_locking_on_sqlite(self):
        db = MagicMock()
        db.bind.dialect.name = 'sqlite'
        locked = self._query_chain(db)

        acquire_row_lock(db, StockCell, StockCell.id == 'x')

        locked.with_for_update.assert_not_called()
        locked.first.assert_called_once()


class TestRunInTransaction:

    def test_retries_version_conflicts(self):
        db = MagicMock()
        calls = []

        def work(session):
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_in_transaction(db, work, max_attempts=5, backoff_seconds=0) == "ok"
        assert len(calls) == 3
        assert db.rollback.call_count == 2
        db.commit.assert_called_once()

    def test_domain_error_is_not_retried(self):
        db = MagicMock()
        work = MagicMock(side_effect=InvalidBookingRequest())

        with pytest.raises(InvalidBookingRequest):
            run_in_transaction(db, work, max_attempts=5, backoff_seconds=0)

        assert work.call_count == 1
        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_gives_up_after_max_attempts(self):
        db = MagicMock()
        work = MagicMock(side_effect=StaleDataError("version mismatch"))

        with pytest.raises(TransactionConflictError):
            run_in_transaction(db, work, max_attempts=3, backoff_seconds=0)

        assert work.call_count == 3

    def test_retryable_classification(self):
        assert is_retryable_error(StaleDataError("x"))
        assert is_retryable_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
        assert is_retryable_error(OperationalError("UPDATE", {}, Exception("database is locked")))
        assert not is_retryable_error(OperationalError("SELECT", {}, Exception("no such table: x")))
        assert not is_retryable_error(ValueError("x"))


class TestConcurrentReservations:

    def _reserve(self, session_factory, make_request, **kwargs):
        session = session_factory()
        try:
            result = ReservationService(session).create_booking(make_request(**kwargs), now=NOW)
            return ("ok", result.booking_id)
        except BookingError as e:
            return (e.__class__.__name__, None)
        finally:
            session.close()

    def test_no_oversell_under_concurrency(self, db, session_factory, stocked, make_request):
        StockLedger(db).provision_range(date(2025, 6, 1), date(2025, 6, 3), [stocked.id], 3)

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [
                pool.submit(self._reserve, session_factory, make_request, quantity=1)
                for _ in range(8)
            ]
            outcomes = [f.result() for f in futures]

        successes = [booking_id for status, booking_id in outcomes if status == "ok"]
        assert 1 <= len(successes) <= 3

        db.expire_all()
        assert db.query(Booking).count() == len(successes)
        for day in (date(2025, 6, 1), date(2025, 6, 2), date(2025, 6, 3)):
            snapshot = StockLedger(db).read_cell(day, stocked.id)
            assert snapshot.reserved == len(successes)
            assert snapshot.reserved <= snapshot.available

    def test_single_use_link_creates_one_booking(self, db, session_factory, stocked, make_request, link_factory):
        link_factory(token="one-shot", single_use=True)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(
                    self._reserve, session_factory, make_request,
                    channel="public_link", link_token="one-shot"
                )
                for _ in range(2)
            ]
            outcomes = [f.result() for f in futures]

        statuses = sorted(status for status, _ in outcomes)
        assert statuses.count("ok") == 1
        assert statuses.count(LinkAlreadyUsedError.__name__) == 1

        db.expire_all()
        link = db.get(BookingLink, "one-shot")
        assert link.reservations_created == 1
        assert db.query(Booking).count() == 1
        assert StockLedger(db).read_cell(date(2025, 6, 1), stocked.id).reserved == 1

    def test_concurrent_release_returns_stock_once(self, db, session_factory, stocked, make_request):
        result = ReservationService(db).create_booking(make_request(quantity=2), now=NOW)
        booking = db.get(Booking, result.booking_id)
        booking.status = BookingStatus.CANCELLED.value
        db.commit()

        def release():
            session = session_factory()
            try:
                return release_booking_stock(session, result.booking_id, "staff")
            except BookingError:
                return None
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=4) as pool:
            released = [f.result() for f in [pool.submit(release) for _ in range(4)]]

        assert released.count(True) == 1
        db.expire_all()
        assert StockLedger(db).read_cell(date(2025, 6, 1), stocked.id).reserved == 0
