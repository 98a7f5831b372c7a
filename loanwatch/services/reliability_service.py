# loanwatch/services/reliability_service.py
"""
User reliability scoring.

    score = round((on_time_return_rate * 0.6 + (1 - no_show_rate) * 0.4) * 100)

The scoring and statistics functions are pure and accept ORM rows or plain
dicts. Profiles are recomputed on demand from the loan/reservation history
and the no-show log; nothing here is stored.
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from numbers import Real
from typing import Any, Iterable, Optional
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.models.loan import Loan, LoanStatus
from loanwatch.models.reservation import Reservation, ReservationStatus
from loanwatch.models.user import User
from loanwatch.services.no_show_service import get_user_no_show_count
from loanwatch.utils.errors import NotFoundError
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import end_of_day, isoformat, to_datetime

logger = get_logger(__name__)

ON_TIME_WEIGHT = 0.6
NO_SHOW_WEIGHT = 0.4

EXCELLENT_SCORE = 90
GOOD_SCORE = 70
FAIR_SCORE = 50
FLAG_THRESHOLD = 50

COUNTED_RESERVATION_STATUSES = (
    ReservationStatus.APPROVED,
    ReservationStatus.READY,
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
    ReservationStatus.NO_SHOW,
)


class UserClassification:
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    ALL = (EXCELLENT, GOOD, FAIR, POOR)


@dataclass
class ReliabilityProfile:
    user_id: str
    user_name: str = ""
    user_email: str = ""
    total_loans: int = 0
    on_time_returns: int = 0
    late_returns: int = 0
    on_time_return_rate: float = 1.0
    total_reservations: int = 0
    no_shows: int = 0
    no_show_rate: float = 0.0
    reliability_score: int = 100
    classification: str = UserClassification.EXCELLENT
    recent_no_shows: int = 0
    is_repeat_offender: bool = False
    is_flagged: bool = False
    last_calculated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_calculated_at"] = isoformat(self.last_calculated_at)
        return data


def _is_number(value: Any) -> bool:
    # bool is an int subclass; True is not a rate
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _field(record: Any, name: str, default=None):
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


# ── Scoring ───────────────────────────────────────────────────────────────────

def calculate_reliability_score(on_time_return_rate, no_show_rate) -> int:
    on_time = min(1.0, max(0.0, on_time_return_rate)) if _is_number(on_time_return_rate) else 0.0
    no_show = min(1.0, max(0.0, no_show_rate)) if _is_number(no_show_rate) else 0.0
    score = (on_time * ON_TIME_WEIGHT + (1 - no_show) * NO_SHOW_WEIGHT) * 100
    return int(min(100, max(0, _round_half_up(score))))


def should_flag_user(reliability_score) -> bool:
    if not _is_number(reliability_score):
        return False
    return reliability_score < FLAG_THRESHOLD


def classify_user(reliability_score) -> str:
    if not _is_number(reliability_score):
        return UserClassification.FAIR
    if reliability_score >= EXCELLENT_SCORE:
        return UserClassification.EXCELLENT
    if reliability_score >= GOOD_SCORE:
        return UserClassification.GOOD
    if reliability_score >= FAIR_SCORE:
        return UserClassification.FAIR
    return UserClassification.POOR


def is_repeat_offender_count(recent_no_shows) -> bool:
    if not _is_number(recent_no_shows):
        return False
    return recent_no_shows >= settings.REPEAT_NO_SHOW_THRESHOLD


# ── History statistics ────────────────────────────────────────────────────────

def calculate_loan_statistics(loans: Iterable[Any]) -> dict:
    """
    Returned and overdue loans only. A return on the expected day (any time
    up to 23:59:59.999999) is on time. Overdue loans are always late.
    No counted loans → rate 1.
    """
    total = on_time = late = 0
    for loan in loans:
        status = _field(loan, "status")
        if status == LoanStatus.RETURNED:
            total += 1
            expected = to_datetime(_field(loan, "expected_return_date"))
            actual = to_datetime(_field(loan, "actual_return_date"))
            if expected is None or actual is None or actual <= end_of_day(expected):
                on_time += 1
            else:
                late += 1
        elif status == LoanStatus.OVERDUE:
            total += 1
            late += 1

    return {
        "total_loans": total,
        "on_time_returns": on_time,
        "late_returns": late,
        "on_time_return_rate": on_time / total if total else 1.0,
    }


def calculate_reservation_statistics(reservations: Iterable[Any]) -> dict:
    total = no_shows = 0
    for reservation in reservations:
        status = _field(reservation, "status")
        if status not in COUNTED_RESERVATION_STATUSES:
            continue
        total += 1
        if status == ReservationStatus.NO_SHOW or _field(reservation, "is_no_show") is True:
            no_shows += 1

    return {
        "total_reservations": total,
        "no_shows": no_shows,
        "no_show_rate": no_shows / total if total else 0.0,
    }


# ── Profiles ──────────────────────────────────────────────────────────────────

def build_profile(user_id: str, loans, reservations, recent_no_shows: int,
                  user_name: str = "", user_email: str = "",
                  now: Optional[datetime] = None) -> ReliabilityProfile:
    loan_stats = calculate_loan_statistics(loans)
    reservation_stats = calculate_reservation_statistics(reservations)
    score = calculate_reliability_score(loan_stats["on_time_return_rate"], reservation_stats["no_show_rate"])
    return ReliabilityProfile(
        user_id=user_id,
        user_name=user_name,
        user_email=user_email,
        **loan_stats,
        **reservation_stats,
        reliability_score=score,
        classification=classify_user(score),
        recent_no_shows=recent_no_shows,
        is_repeat_offender=is_repeat_offender_count(recent_no_shows),
        is_flagged=should_flag_user(score),
        last_calculated_at=now or datetime.utcnow(),
    )


def calculate_user_statistics(db: Session, user_id: str, now: Optional[datetime] = None) -> ReliabilityProfile:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    now = now or datetime.utcnow()
    loans = db.query(Loan).filter(Loan.user_id == user_id).all()
    reservations = db.query(Reservation).filter(Reservation.user_id == user_id).all()
    recent_no_shows = get_user_no_show_count(db, user_id, now=now)

    return build_profile(
        user_id, loans, reservations, recent_no_shows,
        user_name=user.display_name or "",
        user_email=user.email or "",
        now=now,
    )


def calculate_all_user_reliability(db: Session, now: Optional[datetime] = None) -> dict:
    """Profiles for every user. One user failing does not stop the rest."""
    now = now or datetime.utcnow()
    results = {"calculated": 0, "errors": [], "profiles": []}

    for (user_id,) in db.query(User.id).all():
        try:
            results["profiles"].append(calculate_user_statistics(db, user_id, now=now))
            results["calculated"] += 1
        except Exception as e:
            db.rollback()
            logger.error(f"[RELIABILITY] User {user_id} failed: {e}", exc_info=True)
            results["errors"].append({"user_id": user_id, "error": str(e)})

    logger.info(f"[RELIABILITY] Calculated {results['calculated']} profiles, {len(results['errors'])} errors")
    return results


# ── Summaries and rankings over computed profiles ─────────────────────────────

def empty_behavior_summary() -> dict:
    return {
        "total_users": 0,
        "excellent_count": 0,
        "good_count": 0,
        "fair_count": 0,
        "poor_count": 0,
        "flagged_count": 0,
        "repeat_offender_count": 0,
        "average_reliability_score": 0,
    }


def calculate_behavior_summary(profiles: list[ReliabilityProfile]) -> dict:
    summary = empty_behavior_summary()
    summary["total_users"] = len(profiles)
    if not profiles:
        return summary

    for profile in profiles:
        classification = profile.classification
        if classification not in UserClassification.ALL:
            classification = UserClassification.FAIR
        summary[f"{classification}_count"] += 1
        if profile.is_flagged:
            summary["flagged_count"] += 1
        if profile.is_repeat_offender:
            summary["repeat_offender_count"] += 1

    summary["average_reliability_score"] = _round_half_up(sum(p.reliability_score for p in profiles) / len(profiles))
    return summary


def get_top_borrowers(profiles: list[ReliabilityProfile], limit: int = 10) -> list[dict]:
    ranked = sorted((p for p in profiles if p.total_loans > 0), key=lambda p: p.total_loans, reverse=True)
    return [
        {
            "user_id": p.user_id,
            "user_name": p.user_name,
            "user_email": p.user_email,
            "value": p.total_loans,
            "total_loans": p.total_loans,
            "reliability_score": p.reliability_score,
            "classification": p.classification,
            "rank_type": "top_borrower",
        }
        for p in ranked[:limit]
    ]


def get_most_reliable_users(profiles: list[ReliabilityProfile], limit: int = 10,
                            min_loans: Optional[int] = None) -> list[dict]:
    min_loans = settings.MOST_RELIABLE_MIN_LOANS if min_loans is None else min_loans
    ranked = sorted((p for p in profiles if p.total_loans >= min_loans),
                    key=lambda p: p.reliability_score, reverse=True)
    return [
        {
            "user_id": p.user_id,
            "user_name": p.user_name,
            "user_email": p.user_email,
            "value": p.reliability_score,
            "reliability_score": p.reliability_score,
            "total_loans": p.total_loans,
            "on_time_return_rate": p.on_time_return_rate,
            "classification": p.classification,
            "rank_type": "most_reliable",
        }
        for p in ranked[:limit]
    ]


def get_flagged_users(profiles: list[ReliabilityProfile], limit: int = 50) -> list[dict]:
    """Worst score first."""
    ranked = sorted((p for p in profiles if p.is_flagged), key=lambda p: p.reliability_score)
    return [
        {
            "user_id": p.user_id,
            "user_name": p.user_name,
            "user_email": p.user_email,
            "reliability_score": p.reliability_score,
            "classification": p.classification,
            "is_repeat_offender": p.is_repeat_offender,
            "recent_no_shows": p.recent_no_shows,
            "total_loans": p.total_loans,
            "late_returns": p.late_returns,
        }
        for p in ranked[:limit]
    ]


def get_repeat_offenders(profiles: list[ReliabilityProfile], limit: int = 50) -> list[dict]:
    ranked = sorted((p for p in profiles if p.is_repeat_offender), key=lambda p: p.recent_no_shows, reverse=True)
    return [
        {
            "user_id": p.user_id,
            "user_name": p.user_name,
            "user_email": p.user_email,
            "recent_no_shows": p.recent_no_shows,
            "total_no_shows": p.no_shows,
            "no_show_rate": p.no_show_rate,
            "reliability_score": p.reliability_score,
        }
        for p in ranked[:limit]
    ]


def get_reliability_dashboard(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    profiles = calculate_all_user_reliability(db, now=now)["profiles"]
    top = settings.REPORT_TOP_USERS
    return {
        "summary": calculate_behavior_summary(profiles),
        "top_borrowers": get_top_borrowers(profiles, top),
        "most_reliable": get_most_reliable_users(profiles, top),
        "flagged_users": get_flagged_users(profiles, top),
        "repeat_offenders": get_repeat_offenders(profiles, top),
        "last_updated": isoformat(now),
    }
