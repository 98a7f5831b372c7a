"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL in production and SQLite for local runs.
All models are auto-imported here so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from loanwatch.config import settings
from loanwatch.utils.errors import TransientStoreError

if settings.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,          # Auto-reconnect if DB connection drops
        pool_size=10,
        max_overflow=20,
        echo=False,                  # Set True to log all SQL queries (debug only)
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit(db: Session):
    """
    Commit the session. On failure the session is rolled back so the caller
    can keep using it (scans continue with the next record).
    IntegrityError is re-raised as-is; callers use it to detect a lost dedup race.
    Everything else becomes TransientStoreError.
    """
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise TransientStoreError(f"Database write failed: {e}") from e


def create_tables():
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    # Source records scanned by the detectors
    from loanwatch.models.loan import Loan                          # noqa
    from loanwatch.models.reservation import Reservation            # noqa
    from loanwatch.models.equipment import Equipment                # noqa
    from loanwatch.models.user import User                          # noqa
    # Monitoring state
    from loanwatch.models.alert import Alert, AlertAuditLog          # noqa
    from loanwatch.models.no_show import UserNoShowOccurrence        # noqa
    from loanwatch.models.report import ScheduledReport              # noqa

    Base.metadata.create_all(bind=engine)
