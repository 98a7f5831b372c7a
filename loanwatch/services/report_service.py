# loanwatch/services/report_service.py
"""
Scheduled report snapshots.

    daily_summary       one per calendar day   period "2026-01-13"
    weekly_utilization  one per ISO week       period "2026-W03"

Reports are stored under the id "{report_type}_{period}". Regenerating a
period overwrites the previous snapshot and resets its view/download
metadata. Each sub-aggregate that fails to load is replaced by a zeroed
default so the report itself still gets written.
"""

import json
import math
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.database import commit
from loanwatch.models.loan import Loan, LoanStatus
from loanwatch.models.report import ReportStatus, ReportType, ScheduledReport
from loanwatch.models.reservation import Reservation, ReservationStatus
from loanwatch.services.alert_service import empty_alert_stats, get_alert_stats
from loanwatch.services.overdue_service import get_daily_overdue_summary
from loanwatch.services.reliability_service import (
    calculate_all_user_reliability,
    calculate_behavior_summary,
    empty_behavior_summary,
    get_most_reliable_users,
    get_top_borrowers,
)
from loanwatch.services.utilization_service import EquipmentClassification, calculate_all_equipment_utilization
from loanwatch.utils.errors import NotFoundError, TransientStoreError, ValidationError
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import day_bounds, daily_period, isoformat, to_datetime, week_bounds, weekly_period

logger = get_logger(__name__)

TOP_EQUIPMENT = 10


def report_id(report_type: str, period: str) -> str:
    return f"{report_type}_{period}"


def _with_fallback(db: Session, name: str, produce: Callable, default: Callable):
    """Run one sub-aggregate. On failure roll back so the report can still be stored."""
    try:
        return produce()
    except Exception as e:
        db.rollback()
        logger.warning(f"[REPORT] {name} unavailable, using defaults: {e}")
        return default()


async def _with_fallback_async(db: Session, name: str, produce: Callable, default: Callable):
    try:
        return await produce()
    except Exception as e:
        db.rollback()
        logger.warning(f"[REPORT] {name} unavailable, using defaults: {e}")
        return default()


# ── Daily summary ─────────────────────────────────────────────────────────────

def empty_loan_activity() -> dict:
    return {"new_requests": 0, "approved": 0, "rejected": 0, "borrowed": 0,
            "returned": 0, "overdue": 0, "total": 0}


def empty_reservation_activity() -> dict:
    return {"new_reservations": 0, "approved": 0, "cancelled": 0,
            "completed": 0, "no_shows": 0, "total": 0}


def empty_overdue_summary() -> dict:
    return {"total_overdue": 0, "by_priority": {"critical": [], "high": [], "medium": []}, "total_days_overdue": 0}


def get_daily_loan_activity(db: Session, start: datetime, end: datetime) -> dict:
    """Loans touched during [start, end], counted by their current status."""
    activity = empty_loan_activity()
    loans = db.query(Loan).filter(Loan.updated_at >= start, Loan.updated_at <= end).all()
    activity["total"] = len(loans)

    for loan in loans:
        created = to_datetime(loan.created_at)
        if created and start <= created <= end:
            activity["new_requests"] += 1
        if loan.status in (LoanStatus.APPROVED, LoanStatus.REJECTED, LoanStatus.BORROWED,
                           LoanStatus.RETURNED, LoanStatus.OVERDUE):
            activity[loan.status] += 1
    return activity


def get_daily_reservation_activity(db: Session, start: datetime, end: datetime) -> dict:
    activity = empty_reservation_activity()
    reservations = db.query(Reservation).filter(Reservation.updated_at >= start, Reservation.updated_at <= end).all()
    activity["total"] = len(reservations)

    for reservation in reservations:
        created = to_datetime(reservation.created_at)
        if created and start <= created <= end:
            activity["new_reservations"] += 1
        if reservation.status in (ReservationStatus.APPROVED, ReservationStatus.READY):
            activity["approved"] += 1
        elif reservation.status == ReservationStatus.CANCELLED:
            activity["cancelled"] += 1
        elif reservation.status == ReservationStatus.COMPLETED:
            activity["completed"] += 1
        elif reservation.status == ReservationStatus.NO_SHOW:
            activity["no_shows"] += 1
    return activity


async def generate_daily_summary(db: Session, report_date: Optional[datetime] = None) -> ScheduledReport:
    report_date = report_date or datetime.utcnow()
    period = daily_period(report_date)
    start, end = day_bounds(report_date)

    loans = _with_fallback(db, "Loan activity", lambda: get_daily_loan_activity(db, start, end), empty_loan_activity)
    reservations = _with_fallback(db, "Reservation activity",
                                  lambda: get_daily_reservation_activity(db, start, end),
                                  empty_reservation_activity)
    alert_stats = await _with_fallback_async(db, "Alert stats", lambda: get_alert_stats(db, now=report_date),
                                             empty_alert_stats)
    overdue = await _with_fallback_async(db, "Overdue summary", lambda: get_daily_overdue_summary(db, now=report_date),
                                         empty_overdue_summary)

    by_priority = alert_stats["by_priority"]
    overdue_by_priority = overdue["by_priority"]
    data = {
        "date": period,
        "loans": loans,
        "reservations": reservations,
        "alerts": {
            "total": alert_stats["pending"],
            "critical": by_priority.get("critical", 0),
            "high": by_priority.get("high", 0),
            "medium": by_priority.get("medium", 0),
            "low": by_priority.get("low", 0),
            "resolved_today": alert_stats["resolved_today"],
        },
        "overdue": {
            "total": overdue["total_overdue"],
            "critical": len(overdue_by_priority.get("critical", [])),
            "high": len(overdue_by_priority.get("high", [])),
            "medium": len(overdue_by_priority.get("medium", [])),
            "total_days_overdue": overdue["total_days_overdue"],
        },
        "generated_at": isoformat(datetime.utcnow()),
    }
    return store_report(db, ReportType.DAILY_SUMMARY, period, data)


# ── Weekly utilization ────────────────────────────────────────────────────────

def empty_weekly_loan_statistics() -> dict:
    return {"total_requests": 0, "by_status": {}, "by_day": {}, "average_processing_time": 0}


def empty_weekly_reservation_statistics() -> dict:
    return {"total_reservations": 0, "by_status": {}, "by_day": {}, "no_show_rate": 0}


def empty_utilization() -> dict:
    return {
        "utilizations": [],
        "summary": {"average_utilization": 0, "total_equipment": 0, "high_demand_count": 0, "idle_count": 0},
        "errors": [],
    }


def get_weekly_loan_statistics(db: Session, start: datetime, end: datetime) -> dict:
    """Loans created during the week. Processing time is creation → approval/rejection, in hours."""
    stats = empty_weekly_loan_statistics()
    loans = db.query(Loan).filter(Loan.created_at >= start, Loan.created_at <= end).all()
    stats["total_requests"] = len(loans)

    processing = []
    for loan in loans:
        status = loan.status or "unknown"
        stats["by_status"][status] = stats["by_status"].get(status, 0) + 1

        created = to_datetime(loan.created_at)
        if created:
            day = daily_period(created)
            stats["by_day"][day] = stats["by_day"].get(day, 0) + 1

        processed = to_datetime(loan.approved_at) or to_datetime(loan.rejected_at)
        if created and processed:
            processing.append(processed - created)

    if processing:
        hours = sum(processing, timedelta()) / len(processing) / timedelta(hours=1)
        stats["average_processing_time"] = math.floor(hours * 10 + 0.5) / 10
    return stats


def get_weekly_reservation_statistics(db: Session, start: datetime, end: datetime) -> dict:
    """No-show rate is taken over reservations that either completed or were missed."""
    stats = empty_weekly_reservation_statistics()
    reservations = db.query(Reservation).filter(Reservation.created_at >= start, Reservation.created_at <= end).all()
    stats["total_reservations"] = len(reservations)

    no_shows = settled = 0
    for reservation in reservations:
        status = reservation.status or "unknown"
        stats["by_status"][status] = stats["by_status"].get(status, 0) + 1

        created = to_datetime(reservation.created_at)
        if created:
            day = daily_period(created)
            stats["by_day"][day] = stats["by_day"].get(day, 0) + 1

        if status == ReservationStatus.NO_SHOW or reservation.is_no_show:
            no_shows += 1
            settled += 1
        elif status == ReservationStatus.COMPLETED:
            settled += 1

    if settled:
        stats["no_show_rate"] = math.floor(no_shows / settled * 100 + 0.5) / 100
    return stats


async def generate_weekly_utilization(db: Session, report_date: Optional[datetime] = None) -> ScheduledReport:
    report_date = report_date or datetime.utcnow()
    period = weekly_period(report_date)
    start, end = week_bounds(report_date)
    top = settings.REPORT_TOP_USERS

    utilization = _with_fallback(
        db,
        "Equipment utilization",
        lambda: calculate_all_equipment_utilization(db, settings.UTILIZATION_ANALYSIS_DAYS, now=report_date),
        empty_utilization,
    )
    profiles = _with_fallback(
        db,
        "User reliability",
        lambda: calculate_all_user_reliability(db, now=report_date)["profiles"],
        list,
    )
    loan_stats = _with_fallback(db, "Weekly loan statistics",
                                lambda: get_weekly_loan_statistics(db, start, end),
                                empty_weekly_loan_statistics)
    reservation_stats = _with_fallback(db, "Weekly reservation statistics",
                                       lambda: get_weekly_reservation_statistics(db, start, end),
                                       empty_weekly_reservation_statistics)

    utilizations = utilization["utilizations"]
    data = {
        "week_start": isoformat(start),
        "week_end": isoformat(end),
        "equipment": {
            "summary": utilization["summary"],
            "high_demand": [u for u in utilizations
                            if u["classification"] == EquipmentClassification.HIGH_DEMAND][:TOP_EQUIPMENT],
            "idle": [u for u in utilizations if u["classification"] == EquipmentClassification.IDLE][:TOP_EQUIPMENT],
            "average_utilization": utilization["summary"].get("average_utilization", 0),
        },
        "users": {
            "summary": calculate_behavior_summary(profiles) if profiles else empty_behavior_summary(),
            "top_borrowers": get_top_borrowers(profiles, top),
            "most_reliable": get_most_reliable_users(profiles, top),
        },
        "loans": loan_stats,
        "reservations": reservation_stats,
        "generated_at": isoformat(datetime.utcnow()),
    }
    return store_report(db, ReportType.WEEKLY_UTILIZATION, period, data)


# ── Storage and retrieval ─────────────────────────────────────────────────────

def store_report(db: Session, report_type: str, period: str, data: dict,
                 now: Optional[datetime] = None) -> ScheduledReport:
    """Write the snapshot for (report_type, period), replacing any earlier one."""
    now = now or datetime.utcnow()
    key = report_id(report_type, period)

    report = db.get(ScheduledReport, key)
    if report is None:
        report = ScheduledReport(id=key, report_type=report_type, period=period)
        db.add(report)
    report.data = data
    report.status = ReportStatus.COMPLETED
    report.generated_at = now
    report.updated_at = now
    report.viewed_by = []
    report.download_count = 0
    commit(db)

    logger.info(f"[REPORT] Stored {key}")
    return report


def get_report(db: Session, report_type: str, period: str) -> Optional[ScheduledReport]:
    return db.get(ScheduledReport, report_id(report_type, period))


def get_report_by_id(db: Session, key: str) -> Optional[ScheduledReport]:
    return db.get(ScheduledReport, key)


def _require_report(db: Session, key: str) -> ScheduledReport:
    report = db.get(ScheduledReport, key)
    if report is None:
        raise NotFoundError(f"Report {key} not found")
    return report


def get_report_history(db: Session, report_type: Optional[str] = None,
                       limit: Optional[int] = None) -> list[ScheduledReport]:
    q = db.query(ScheduledReport)
    if report_type:
        q = q.filter(ScheduledReport.report_type == report_type)
    q = q.order_by(ScheduledReport.generated_at.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def get_latest_report(db: Session, report_type: str) -> Optional[ScheduledReport]:
    return (
        db.query(ScheduledReport)
        .filter(ScheduledReport.report_type == report_type)
        .order_by(ScheduledReport.generated_at.desc())
        .first()
    )


def report_exists(db: Session, report_type: str, period: str) -> bool:
    return get_report(db, report_type, period) is not None


def current_period(report_type: str, now: datetime) -> str:
    if report_type == ReportType.DAILY_SUMMARY:
        return daily_period(now)
    if report_type == ReportType.WEEKLY_UTILIZATION:
        return weekly_period(now)
    raise ValidationError(f"Unknown report type: {report_type}")


async def generate_report(db: Session, report_type: str, report_date: Optional[datetime] = None) -> ScheduledReport:
    if report_type == ReportType.DAILY_SUMMARY:
        return await generate_daily_summary(db, report_date)
    if report_type == ReportType.WEEKLY_UTILIZATION:
        return await generate_weekly_utilization(db, report_date)
    raise ValidationError(f"Unknown report type: {report_type}")


async def ensure_report_exists(db: Session, report_type: str, now: Optional[datetime] = None) -> ScheduledReport:
    """Today's (or this week's) report, generating it only if missing."""
    now = now or datetime.utcnow()
    existing = get_report(db, report_type, current_period(report_type, now))
    if existing:
        return existing
    return await generate_report(db, report_type, now)


def get_report_summary(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    latest_daily = get_report(db, ReportType.DAILY_SUMMARY, daily_period(now))
    latest_weekly = get_report(db, ReportType.WEEKLY_UTILIZATION, weekly_period(now))

    counts = {t: 0 for t in ReportType.ALL}
    for (report_type,) in db.query(ScheduledReport.report_type).all():
        if report_type in counts:
            counts[report_type] += 1

    return {
        "latest_daily": latest_daily,
        "latest_weekly": latest_weekly,
        "has_today_report": latest_daily is not None,
        "has_this_week_report": latest_weekly is not None,
        "total_daily_reports": counts[ReportType.DAILY_SUMMARY],
        "total_weekly_reports": counts[ReportType.WEEKLY_UTILIZATION],
        "last_updated": now,
    }


# ── View/download metadata ────────────────────────────────────────────────────

def mark_report_viewed(db: Session, key: str, admin_id: str, now: Optional[datetime] = None) -> ScheduledReport:
    """Add admin_id to viewed_by once. Never touches report.data."""
    report = _require_report(db, key)
    viewed_by = list(report.viewed_by or [])
    if admin_id not in viewed_by:
        # New list so the JSON column is marked dirty
        report.viewed_by = viewed_by + [admin_id]
        report.updated_at = now or datetime.utcnow()
        commit(db)
    return report


def increment_download_count(db: Session, key: str, now: Optional[datetime] = None) -> ScheduledReport:
    report = _require_report(db, key)
    report.download_count = (report.download_count or 0) + 1
    report.updated_at = now or datetime.utcnow()
    commit(db)
    return report


def export_report_to_json(db: Session, key: str) -> str:
    """Serialises only report.data; counts as a download."""
    report = _require_report(db, key)
    payload = json.dumps(report.data, indent=2, ensure_ascii=False, default=str)
    increment_download_count(db, key)
    return payload


def cleanup_old_reports(db: Session, days_to_keep: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """Delete snapshots generated before the cutoff. Failures are logged and reported as 0 deleted."""
    days_to_keep = settings.REPORT_RETENTION_DAYS if days_to_keep is None else days_to_keep
    cutoff = (now or datetime.utcnow()) - timedelta(days=days_to_keep)
    try:
        deleted = (
            db.query(ScheduledReport)
            .filter(ScheduledReport.generated_at < cutoff)
            .delete(synchronize_session=False)
        )
        commit(db)
    except (TransientStoreError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"[REPORT] Cleanup failed: {e}", exc_info=True)
        return 0

    logger.info(f"[REPORT] Cleaned up {deleted} reports older than {days_to_keep} days")
    return deleted
