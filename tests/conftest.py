"""
Pytest configuration and shared fixtures for the order lifecycle tests.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import models_google_calendar  # noqa: E402,F401
from app.database import Base  # noqa: E402
from app.domain.orders.repository import OrderRepository  # noqa: E402
from app.models import Order, OrderStatus, User  # noqa: E402
from app.services.clock import FixedClock  # noqa: E402
from app.services.google_calendar_service import CalendarCredentials  # noqa: E402
from support import FakeCalendarClient, utc  # noqa: E402


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return OrderRepository(db)


@pytest.fixture
def user(db):
    user = User(email="reviewer@example.com", full_name="Test Reviewer")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_order(db, user):
    """Factory for persisted orders; dates should be given in UTC"""

    def _make(**fields):
        values = {
            "user_id": user.id,
            "product_name": "Wireless Earbuds",
            "platform": "Amazon",
            "platform_order_id": "402-1234567",
            "order_amount": 149900,
            "refund_amount": 149900,
            "status": OrderStatus.ORDERED.value,
        }
        values.update(fields)
        values["status"] = getattr(values["status"], "value", values["status"])
        order = Order(**values)
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def clock():
    """UTC clock frozen at 2026-03-15 12:00"""
    return FixedClock(utc(2026, 3, 15, 12, 0))


@pytest.fixture
def kolkata_clock():
    """Asia/Kolkata clock frozen at 2026-03-15 09:00 local (03:30 UTC)"""
    return FixedClock(utc(2026, 3, 15, 3, 30), timezone="Asia/Kolkata")


@pytest.fixture
def calendar_client():
    return FakeCalendarClient()


@pytest.fixture
def credentials():
    return CalendarCredentials(access_token="test-access-token")


@pytest.fixture
def credentials_loader(credentials):
    """Loader that connects every user's calendar"""

    async def _load(repo, user_id):
        return credentials

    return _load
