# loanwatch/routers/health.py
"""
System health check endpoint.
Database reachability plus the two things an operator checks first:
the open alert backlog and whether today's scheduled report ran.
"""

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loanwatch.database import get_db
from loanwatch.models.alert import Alert
from loanwatch.models.report import ReportType
from loanwatch.services.report_service import report_exists
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import daily_period

logger = get_logger(__name__)
router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    now = datetime.utcnow()
    result = {
        "status": "ok",
        "timestamp": now.isoformat(),
        "backend": "ok",
        "database": "unknown",
        "open_alerts": None,
        "has_today_report": None,
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
        result["open_alerts"] = db.query(Alert).filter(Alert.is_resolved.is_(False)).count()
        result["has_today_report"] = report_exists(db, ReportType.DAILY_SUMMARY, daily_period(now))
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        result["database"] = f"error: {e}"
        result["status"] = "degraded"

    return result
