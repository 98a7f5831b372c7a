# loanwatch/services/utilization_service.py
"""
Equipment utilization over a trailing window (default 7 days).

    utilization_rate = borrowed_days / analysis_days   (clamped to [0, 1])

Classification:
    high_demand  rate >= HIGH_DEMAND_UTILIZATION
    idle         never borrowed, or last borrowed IDLE_EQUIPMENT_DAYS+ days ago
    normal       everything else
"""

import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.models.equipment import Equipment
from loanwatch.models.loan import Loan, LoanStatus
from loanwatch.utils.errors import NotFoundError
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import DAY, isoformat, start_of_day, to_datetime

logger = get_logger(__name__)

UTILIZED_STATUSES = (LoanStatus.BORROWED, LoanStatus.RETURNED, LoanStatus.OVERDUE)


class EquipmentClassification:
    HIGH_DEMAND = "high_demand"
    NORMAL = "normal"
    IDLE = "idle"


def calculate_utilization_rate(borrowed_days, total_days) -> float:
    if total_days <= 0 or borrowed_days < 0:
        return 0.0
    return min(max(borrowed_days / total_days, 0.0), 1.0)


def classify_equipment(utilization_rate: float, last_borrowed_date: Any, now: Optional[datetime] = None) -> str:
    if utilization_rate >= settings.HIGH_DEMAND_UTILIZATION:
        return EquipmentClassification.HIGH_DEMAND

    last_borrowed = to_datetime(last_borrowed_date)
    if last_borrowed is None:
        return EquipmentClassification.IDLE

    days_idle = (start_of_day(now or datetime.utcnow()) - start_of_day(last_borrowed)) // DAY
    if days_idle >= settings.IDLE_EQUIPMENT_DAYS:
        return EquipmentClassification.IDLE
    return EquipmentClassification.NORMAL


def calculate_borrowed_days(loans: Iterable[Loan], period_start: datetime, period_end: datetime,
                            now: Optional[datetime] = None) -> dict:
    """
    Days each loan overlaps [period_start, period_end], rounded up per loan.
    A loan still out with no return date runs until now.
    """
    now = now or datetime.utcnow()
    borrowed_days = total_loans = total_duration = 0
    last_borrowed = None

    for loan in loans:
        borrowed = to_datetime(loan.borrow_date)
        if borrowed is None:
            continue
        returned = to_datetime(loan.actual_return_date) or to_datetime(loan.expected_return_date)
        if returned is None and loan.status == LoanStatus.BORROWED:
            returned = now

        effective_start = max(borrowed, period_start)
        effective_end = min(returned or now, period_end)
        if effective_start >= effective_end:
            continue

        borrowed_days += math.ceil((effective_end - effective_start) / DAY)
        total_loans += 1
        if returned:
            total_duration += math.ceil((returned - borrowed) / DAY)
        if last_borrowed is None or borrowed > last_borrowed:
            last_borrowed = borrowed

    return {
        "borrowed_days": borrowed_days,
        "total_loans": total_loans,
        "last_borrowed_date": last_borrowed,
        "average_duration": round(total_duration / total_loans) if total_loans else 0,
    }


def calculate_equipment_utilization(db: Session, equipment: Equipment, analysis_days: Optional[int] = None,
                                    now: Optional[datetime] = None) -> dict:
    if equipment is None:
        raise NotFoundError("Equipment not found")

    analysis_days = analysis_days or settings.UTILIZATION_ANALYSIS_DAYS
    now = now or datetime.utcnow()
    period_start = now - timedelta(days=analysis_days)

    loans = db.query(Loan).filter(
        Loan.equipment_id == equipment.id,
        Loan.status.in_(UTILIZED_STATUSES),
    ).all()
    loan_stats = calculate_borrowed_days(loans, period_start, now, now=now)
    rate = calculate_utilization_rate(loan_stats["borrowed_days"], analysis_days)

    return {
        "equipment_id": equipment.id,
        "equipment_name": equipment.name or "Unknown",
        "category": equipment.category or "",
        "total_days": analysis_days,
        "borrowed_days": loan_stats["borrowed_days"],
        "utilization_rate": rate,
        "classification": classify_equipment(rate, loan_stats["last_borrowed_date"], now),
        "last_borrowed_date": isoformat(loan_stats["last_borrowed_date"]),
        "total_loans": loan_stats["total_loans"],
        "average_loan_duration": loan_stats["average_duration"],
        "period": now.strftime("%Y-%m"),
        "calculated_at": isoformat(now),
    }


def calculate_utilization_summary(utilizations: list[dict], now: Optional[datetime] = None) -> dict:
    summary = {
        "total_equipment": len(utilizations),
        "high_demand_count": 0,
        "normal_count": 0,
        "idle_count": 0,
        "average_utilization": 0,
        "period": utilizations[0]["period"] if utilizations else (now or datetime.utcnow()).strftime("%Y-%m"),
    }
    if not utilizations:
        return summary

    for utilization in utilizations:
        if utilization["classification"] == EquipmentClassification.HIGH_DEMAND:
            summary["high_demand_count"] += 1
        elif utilization["classification"] == EquipmentClassification.IDLE:
            summary["idle_count"] += 1
        else:
            summary["normal_count"] += 1

    summary["average_utilization"] = sum(u["utilization_rate"] for u in utilizations) / len(utilizations)
    return summary


def calculate_all_equipment_utilization(db: Session, analysis_days: Optional[int] = None,
                                        now: Optional[datetime] = None) -> dict:
    """Every active equipment item. One item failing does not stop the rest."""
    now = now or datetime.utcnow()
    results = {"utilizations": [], "summary": None, "errors": []}

    for equipment in db.query(Equipment).filter(Equipment.is_active == True).all():  # noqa: E712
        equipment_id = equipment.id
        try:
            results["utilizations"].append(calculate_equipment_utilization(db, equipment, analysis_days, now))
        except Exception as e:
            db.rollback()
            logger.error(f"[UTILIZATION] Equipment {equipment_id} failed: {e}", exc_info=True)
            results["errors"].append({"equipment_id": equipment_id, "error": str(e)})

    results["summary"] = calculate_utilization_summary(results["utilizations"], now)
    return results
