"""Pytest configuration and fixtures."""

import datetime

import pytest
from sqlalchemy.orm import sessionmaker

import logic
from calendar_helper import to_civil
from db import make_engine, init_db
from models import Customer


@pytest.fixture
def start_date() -> datetime.date:
    """1403/01/01, the first day of a leap solar year."""
    return to_civil(1403, 1, 1)


@pytest.fixture
def contract(start_date):
    """Unsaved 12-installment contract: 12,000,000 at 18%."""
    return logic.generate_schedule(1, 12_000_000, 18, 12, start_date, contract_number="C14030001")


@pytest.fixture
def session():
    """Session bound to a fresh in-memory SQLite database."""
    engine = make_engine("sqlite://")
    init_db(engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    s = Session()
    yield s
    s.close()
    engine.dispose()


@pytest.fixture
def customer(session):
    c = Customer(name="علی رضایی", mobile="09120000000")
    session.add(c)
    session.commit()
    return c
