"""Pytest fixtures for testing"""

import pytest
from datetime import date
from decimal import Decimal
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.models import Frequency, PaymentObligation, TenancySettings
from rentwatch.infrastructure.database.models import Base
from rentwatch.infrastructure.holidays import JsonHolidayProvider


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Fresh schema; yields the session factory for code that opens its own sessions"""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create test database and session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def calendar() -> WorkingDayCalendar:
    """NZ calendar from the bundled holiday table, no region, summer closedown on"""
    return WorkingDayCalendar(JsonHolidayProvider())


@pytest.fixture
def weekly_settings() -> TenancySettings:
    """$500 weekly on Wednesday, tracked from Thursday 1 January 2026"""
    return TenancySettings(
        frequency=Frequency.WEEKLY,
        rent_amount=Decimal("500.00"),
        due_day="Wednesday",
        tracking_start_date=date(2026, 1, 1),
    )


@pytest.fixture
def weekly_obligations() -> list[PaymentObligation]:
    """Ledger rows for weekly_settings up to 21 January 2026, all unpaid"""
    return [
        PaymentObligation(id=f"row_{i}", tenant_id="tenant_1", due_date=due, amount_due=Decimal("500.00"))
        for i, due in enumerate([date(2026, 1, 7), date(2026, 1, 14), date(2026, 1, 21)])
    ]
