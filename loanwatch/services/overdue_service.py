# loanwatch/services/overdue_service.py
"""
Overdue loan detection.
Scans loans in BORROWED/OVERDUE status, computes whole days past the
expected return date (calendar days, midnight to midnight) and keeps one
open overdue_loan alert per loan, escalating it as the delay grows:

    due today  → medium
    1-2 days   → high
    3+ days    → critical
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.models.alert import AlertPriority, AlertType, QuickActionType, SourceType
from loanwatch.models.loan import Loan, LoanStatus
from loanwatch.schemas.alert import AlertCreate
from loanwatch.services.alert_service import (
    build_quick_action,
    create_alert,
    list_active_alerts,
)
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import DAY, isoformat, start_of_day, to_datetime

logger = get_logger(__name__)

SCANNED_STATUSES = (LoanStatus.BORROWED, LoanStatus.OVERDUE)


@dataclass
class OverdueScanResult:
    scanned: int = 0
    new_alerts: int = 0
    escalated_alerts: int = 0
    errors: list = field(default_factory=list)


def calculate_days_overdue(expected_return_date, now: datetime) -> int:
    """Negative while the loan is not yet due. Missing date counts as due today."""
    expected = to_datetime(expected_return_date)
    if expected is None:
        return 0
    return (start_of_day(now) - start_of_day(expected)) // DAY


def calculate_overdue_priority(days_overdue: int) -> AlertPriority:
    if days_overdue >= settings.OVERDUE_CRITICAL_DAYS:
        return AlertPriority.CRITICAL
    if days_overdue >= settings.OVERDUE_HIGH_DAYS:
        return AlertPriority.HIGH
    if days_overdue >= 0:
        return AlertPriority.MEDIUM
    return AlertPriority.LOW


def overdue_quick_actions(loan: Loan) -> list[dict]:
    return [
        build_quick_action("send_reminder", "Send reminder", QuickActionType.SEND_REMINDER,
                           {"loan_id": loan.id, "user_id": loan.user_id}),
        build_quick_action("mark_contacted", "Mark as contacted", QuickActionType.MARK_CONTACTED,
                           {"loan_id": loan.id}),
        build_quick_action("dismiss", "Dismiss", QuickActionType.DISMISS, {"loan_id": loan.id}),
    ]


def build_overdue_alert(loan: Loan, days_overdue: int) -> AlertCreate:
    priority = calculate_overdue_priority(days_overdue)
    equipment = loan.equipment_name or "Equipment"
    borrower = loan.user_name or "user"
    unit = "day" if days_overdue == 1 else "days"

    title = f"Loan overdue by {days_overdue} {unit}"
    if priority == AlertPriority.CRITICAL:
        title += " (critical)"

    return AlertCreate(
        type=AlertType.OVERDUE_LOAN.value,
        priority=priority,
        title=title,
        description=f"{equipment} borrowed by {borrower} is {days_overdue} {unit} past its return date",
        source_id=loan.id,
        source_type=SourceType.LOAN,
        source_data={
            "loan_id": loan.id,
            "equipment_id": loan.equipment_id,
            "equipment_name": loan.equipment_name,
            "user_id": loan.user_id,
            "user_name": loan.user_name,
            "user_email": loan.user_email,
            "expected_return_date": isoformat(loan.expected_return_date),
            "days_overdue": days_overdue,
        },
        quick_actions=overdue_quick_actions(loan),
    )


async def scan_overdue_loans(db: Session, now: Optional[datetime] = None) -> OverdueScanResult:
    """
    One full pass over outstanding loans. A failing loan is recorded in
    result.errors and the scan moves on; a failing loan query propagates.
    """
    now = now or datetime.utcnow()
    result = OverdueScanResult()

    loans = db.query(Loan).filter(Loan.status.in_(SCANNED_STATUSES)).all()
    for loan in loans:
        loan_id = loan.id
        result.scanned += 1
        try:
            days_overdue = calculate_days_overdue(loan.expected_return_date, now)
            if days_overdue < 0:
                continue

            write = await create_alert(db, build_overdue_alert(loan, days_overdue), now=now)
            if write.created:
                result.new_alerts += 1
            elif write.escalated:
                result.escalated_alerts += 1
        except Exception as e:
            # A failed statement leaves the transaction aborted on PostgreSQL
            db.rollback()
            logger.error(f"[OVERDUE] Loan {loan_id} failed: {e}", exc_info=True)
            result.errors.append({"loan_id": loan_id, "error": str(e)})

    logger.info(
        f"[OVERDUE] Scanned {result.scanned} loans — {result.new_alerts} new, "
        f"{result.escalated_alerts} escalated, {len(result.errors)} errors"
    )
    return result


async def get_daily_overdue_summary(db: Session, now: Optional[datetime] = None) -> dict:
    """Open overdue alerts grouped by priority, with the accumulated days overdue."""
    now = now or datetime.utcnow()
    summary = {
        "date": now.strftime("%Y-%m-%d"),
        "total_overdue": 0,
        "by_priority": {"critical": [], "high": [], "medium": []},
        "total_days_overdue": 0,
    }

    for alert in await list_active_alerts(db, alert_type=AlertType.OVERDUE_LOAN.value):
        data = alert.source_data or {}
        summary["total_overdue"] += 1
        summary["total_days_overdue"] += data.get("days_overdue") or 0
        bucket = summary["by_priority"].get(alert.priority)
        if bucket is not None:
            bucket.append({
                "alert_id": alert.id,
                "loan_id": alert.source_id,
                "equipment_name": data.get("equipment_name"),
                "user_name": data.get("user_name"),
                "days_overdue": data.get("days_overdue"),
            })
    return summary
