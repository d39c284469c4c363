"""
Shared fixtures.

Every test gets its own file-backed SQLite database (threaded tests need
separate connections to the same file). The API client overrides `get_db`
and is created without entering the lifespan, so no scheduler starts.
"""

import os
import sys

# Settings are read once at import time
os.environ.setdefault("SWEEP_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_seabob.db")
os.environ.setdefault("STRIPE_SECRET_KEY", "")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from seabob.database import Base, get_db
from seabob.models import Product, BookingLink
from seabob.services.reservation import BookingRequest, ItemRequest
from seabob.services.stock_ledger import StockLedger


@pytest.fixture
def engine(tmp_path):
    db_path = tmp_path / "seabob_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def product(db):
    """SeaBob F5: 100/day, 30/hour, 10% partner commission"""
    p = Product(
        id="seabob-f5",
        name="SeaBob F5",
        daily_price=Decimal("100.00"),
        hourly_price=Decimal("30.00"),
        commission_percent=Decimal("10.00"),
        is_active=True,
    )
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def jetski(db):
    p = Product(
        id="jetski-1",
        name="Jet Ski",
        daily_price=Decimal("200.00"),
        hourly_price=Decimal("60.00"),
        commission_percent=Decimal("0"),
        is_active=True,
    )
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def stocked(db, product):
    """Two units of the SeaBob available 2025-06-01 .. 2025-06-10."""
    StockLedger(db).provision_range(date(2025, 6, 1), date(2025, 6, 10), [product.id], 2, "staff")
    return product


@pytest.fixture
def make_request():
    def _make(product_id="seabob-f5", quantity=1, start=date(2025, 6, 1), end=date(2025, 6, 3), **kwargs):
        return BookingRequest(
            client_name=kwargs.pop("client_name", "Ana García"),
            client_email=kwargs.pop("client_email", "ana@example.com"),
            start_date=start,
            end_date=end,
            items=kwargs.pop("items", None) or [ItemRequest(product_id=product_id, quantity=quantity)],
            **kwargs
        )
    return _make


@pytest.fixture
def link_factory(db):
    def _make(token="link-token-1", single_use=False, active=True, partner_id=None, partner_role=None):
        link = BookingLink(
            token=token,
            active=active,
            single_use=single_use,
            used=False,
            visits=0,
            reservations_created=0,
            created_by="staff-maria",
            partner_id=partner_id,
            partner_role=partner_role,
        )
        db.add(link)
        db.commit()
        return link
    return _make


@pytest.fixture
def client(session_factory):
    from seabob.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
