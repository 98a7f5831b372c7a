# tests/conftest.py
"""
Shared fixtures: an in-memory SQLite session with every table created,
plus small factories for the source records the detectors scan.
"""

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Must be set before loanwatch.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from datetime import datetime
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from loanwatch.database import Base
from loanwatch.models import (  # noqa: F401  registers every table on Base.metadata
    Alert, AlertAuditLog, Equipment, Loan, Reservation, ScheduledReport, User, UserNoShowOccurrence,
)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def abort_transaction(db):
    """
    PostgreSQL behaviour SQLite lacks: once a statement fails, every later
    statement in the transaction fails until the session rolls back.
    Call the returned function to put the session into that state.
    """
    state = {"aborted": False}

    def fail_while_aborted(orm_execute_state):
        if state["aborted"]:
            raise OperationalError("SELECT", {}, Exception("current transaction is aborted"))

    def clear(session, previous_transaction):
        state["aborted"] = False

    event.listen(db, "do_orm_execute", fail_while_aborted)
    event.listen(db, "after_soft_rollback", clear)

    def abort():
        db.connection()   # make sure there is a transaction to roll back
        state["aborted"] = True

    yield abort
    state["aborted"] = False


def db_failure(message="connection reset"):
    return OperationalError("SELECT", {}, Exception(message))


def make_loan(db, loan_id="loan-1", status="borrowed", user_id="user-1", equipment_id="eq-1", **fields):
    defaults = {
        "equipment_name": "Canon EOS R6",
        "user_name": "Somchai",
        "user_email": "somchai@example.com",
        "created_at": datetime(2026, 1, 1, 9, 0),
        "updated_at": datetime(2026, 1, 1, 9, 0),
    }
    defaults.update(fields)
    loan = Loan(id=loan_id, status=status, user_id=user_id, equipment_id=equipment_id, **defaults)
    db.add(loan)
    db.commit()
    return loan


def make_reservation(db, reservation_id="res-1", status="ready", user_id="user-1", **fields):
    defaults = {
        "equipment_id": "eq-1",
        "equipment_name": "DJI Ronin",
        "user_name": "Somchai",
        "user_email": "somchai@example.com",
        "start_time": datetime(2026, 1, 13, 9, 0),
        "end_time": datetime(2026, 1, 14, 9, 0),
        "is_no_show": False,
        "created_at": datetime(2026, 1, 10, 9, 0),
        "updated_at": datetime(2026, 1, 10, 9, 0),
    }
    defaults.update(fields)
    reservation = Reservation(id=reservation_id, status=status, user_id=user_id, **defaults)
    db.add(reservation)
    db.commit()
    return reservation


def make_user(db, user_id="user-1", display_name="Somchai", email="somchai@example.com"):
    user = User(id=user_id, display_name=display_name, email=email, created_at=datetime(2025, 6, 1))
    db.add(user)
    db.commit()
    return user


def make_equipment(db, equipment_id="eq-1", name="Canon EOS R6", is_active=True):
    equipment = Equipment(id=equipment_id, name=name, category="camera", is_active=is_active,
                          created_at=datetime(2025, 6, 1))
    db.add(equipment)
    db.commit()
    return equipment


def add_no_show(db, user_id, occurred_at, reservation_id=None):
    row = UserNoShowOccurrence(user_id=user_id, reservation_id=reservation_id,
                               occurred_at=occurred_at, created_at=occurred_at)
    db.add(row)
    db.commit()
    return row
