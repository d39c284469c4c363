"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers
- Transaction runner with optimistic-retry on conflicting writes
"""

import logging
import random
import time
from typing import Callable, Optional, TypeVar, Type
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError, OperationalError

from ..services.errors import TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# OperationalError messages that mean "someone else holds the row/db, try again"
_TRANSIENT_MARKERS = (
    "database is locked",
    "could not obtain lock",
    "deadlock detected",
    "could not serialize",
    "lock timeout",
)


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        dialect = db.bind.dialect.name
        return dialect == 'postgresql'
    except Exception:
        return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False
) -> Optional[T]:
    """
    Read a row for update.

    On PostgreSQL the row is locked with SELECT ... FOR UPDATE. On SQLite no
    lock is taken; writers are serialized by the version column instead, so
    the read always refreshes the identity map (populate_existing) to compare
    against the latest committed version.

    Example:
        booking = acquire_row_lock(db, Booking, Booking.id == booking_id)
    """
    query = db.query(model).filter(filter_condition).populate_existing()

    # Only apply locking on PostgreSQL
    if is_postgres(db):
        if nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()


def is_retryable_error(exc: Exception) -> bool:
    """Version conflicts, duplicate lazy inserts and lock contention are retried."""
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def run_in_transaction(
    db: Session,
    work: Callable[[Session], T],
    max_attempts: int = 5,
    backoff_seconds: float = 0.05,
    label: str = "transaction"
) -> T:
    """
    Run `work(db)` and commit, as one atomic unit.

    Conflicting concurrent writes surface as StaleDataError (version column
    mismatch), IntegrityError (two writers creating the same row) or a
    transient OperationalError; those roll back and re-run `work` from
    scratch, so every attempt re-reads current state. Any other exception
    (domain rejections included) rolls back and propagates immediately.

    Raises:
        TransactionConflictError: if every attempt hit a conflict
    """
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except Exception as e:
            db.rollback()
            if not is_retryable_error(e):
                raise
            last_error = e
            logger.warning(
                f"{label}: conflict on attempt {attempt}/{max_attempts} "
                f"({e.__class__.__name__}), retrying"
            )
            if attempt < max_attempts:
                time.sleep(backoff_seconds * attempt + random.uniform(0, backoff_seconds))

    logger.error(f"{label}: giving up after {max_attempts} attempts: {last_error}")
    raise TransactionConflictError(label)
