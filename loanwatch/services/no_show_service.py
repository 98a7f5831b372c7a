# loanwatch/services/no_show_service.py
"""
No-show reservation detection.
A reservation is a no-show when it is still READY (approved, waiting for
pickup) more than NO_SHOW_GRACE_HOURS after its start time. Reservations in
any other status are never flagged after the fact.

The first detection creates the alert and appends one row to the
user_no_shows log. Later scans find the open alert and do nothing, so the
log never gets a duplicate occurrence for the same reservation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.database import commit
from loanwatch.models.alert import AlertPriority, AlertType, QuickActionType, SourceType
from loanwatch.models.no_show import UserNoShowOccurrence
from loanwatch.models.reservation import Reservation, ReservationStatus
from loanwatch.schemas.alert import AlertCreate
from loanwatch.services.alert_service import build_quick_action, create_alert, get_alert_by_source
from loanwatch.utils.errors import TransientStoreError
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import isoformat, to_datetime

logger = get_logger(__name__)


@dataclass
class NoShowScanResult:
    scanned: int = 0
    new_alerts: int = 0
    errors: list = field(default_factory=list)


def is_no_show(reservation: Reservation, now: datetime) -> bool:
    if reservation is None or reservation.status != ReservationStatus.READY:
        return False
    start_time = to_datetime(reservation.start_time)
    if start_time is None:
        return False
    return now > start_time + timedelta(hours=settings.NO_SHOW_GRACE_HOURS)


def no_show_quick_actions(reservation: Reservation) -> list[dict]:
    return [
        build_quick_action("cancel_reservation", "Cancel reservation", QuickActionType.CANCEL_RESERVATION,
                           {"reservation_id": reservation.id}),
        build_quick_action("extend_pickup", "Extend pickup time", QuickActionType.EXTEND_PICKUP,
                           {"reservation_id": reservation.id}),
        build_quick_action("contact_user", "Contact user", QuickActionType.CONTACT_USER,
                           {"reservation_id": reservation.id, "user_id": reservation.user_id}),
        build_quick_action("dismiss", "Dismiss", QuickActionType.DISMISS, {"reservation_id": reservation.id}),
    ]


def build_no_show_alert(reservation: Reservation) -> AlertCreate:
    equipment = reservation.equipment_name or "equipment"
    holder = reservation.user_name or "user"
    return AlertCreate(
        type=AlertType.NO_SHOW_RESERVATION.value,
        priority=AlertPriority.HIGH,
        title="Reserved equipment not picked up",
        description=(f"Reservation of {equipment} by {holder} was not collected within "
                     f"{settings.NO_SHOW_GRACE_HOURS} hours of its start time"),
        source_id=reservation.id,
        source_type=SourceType.RESERVATION,
        source_data={
            "reservation_id": reservation.id,
            "equipment_id": reservation.equipment_id,
            "equipment_name": reservation.equipment_name,
            "user_id": reservation.user_id,
            "user_name": reservation.user_name,
            "user_email": reservation.user_email,
            "start_time": isoformat(reservation.start_time),
            "end_time": isoformat(reservation.end_time),
        },
        quick_actions=no_show_quick_actions(reservation),
    )


def track_user_no_show(db: Session, user_id: str, reservation_id: Optional[str], occurred_at: datetime) -> bool:
    """Append to the no-show log. Failures are logged, not raised."""
    try:
        db.add(UserNoShowOccurrence(
            user_id=user_id,
            reservation_id=reservation_id,
            occurred_at=occurred_at,
            created_at=datetime.utcnow(),
        ))
        commit(db)
        return True
    except (TransientStoreError, SQLAlchemyError) as e:
        logger.error(f"[NO-SHOW] Could not record no-show for user {user_id}: {e}", exc_info=True)
        return False


async def scan_no_show_reservations(db: Session, now: Optional[datetime] = None) -> NoShowScanResult:
    now = now or datetime.utcnow()
    result = NoShowScanResult()

    reservations = db.query(Reservation).filter(Reservation.status == ReservationStatus.READY).all()
    for reservation in reservations:
        reservation_id = reservation.id
        result.scanned += 1
        try:
            if not is_no_show(reservation, now):
                continue
            if await get_alert_by_source(db, reservation.id, AlertType.NO_SHOW_RESERVATION.value):
                continue

            write = await create_alert(db, build_no_show_alert(reservation), now=now)
            if write.created:
                result.new_alerts += 1
                track_user_no_show(db, reservation.user_id, reservation.id, now)
        except Exception as e:
            db.rollback()
            logger.error(f"[NO-SHOW] Reservation {reservation_id} failed: {e}", exc_info=True)
            result.errors.append({"reservation_id": reservation_id, "error": str(e)})

    logger.info(
        f"[NO-SHOW] Scanned {result.scanned} ready reservations — "
        f"{result.new_alerts} new no-shows, {len(result.errors)} errors"
    )
    return result


def get_user_no_show_count(db: Session, user_id: str, days: Optional[int] = None,
                           now: Optional[datetime] = None) -> int:
    days = settings.REPEAT_NO_SHOW_WINDOW_DAYS if days is None else days
    cutoff = (now or datetime.utcnow()) - timedelta(days=days)
    return db.query(UserNoShowOccurrence).filter(
        UserNoShowOccurrence.user_id == user_id,
        UserNoShowOccurrence.occurred_at >= cutoff,
    ).count()


def get_user_no_show_patterns(db: Session, user_id: str, now: Optional[datetime] = None) -> dict:
    """No-show history for one user: rolling 30/60/90-day counts and the latest ten."""
    now = now or datetime.utcnow()
    occurrences = (
        db.query(UserNoShowOccurrence)
        .filter(UserNoShowOccurrence.user_id == user_id)
        .order_by(UserNoShowOccurrence.occurred_at.desc())
        .all()
    )

    def within(days):
        cutoff = now - timedelta(days=days)
        return sum(1 for o in occurrences if o.occurred_at >= cutoff)

    last_30 = within(30)
    return {
        "user_id": user_id,
        "total_no_shows": len(occurrences),
        "last_30_days": last_30,
        "last_60_days": within(60),
        "last_90_days": within(90),
        "is_repeat_offender": last_30 >= settings.REPEAT_NO_SHOW_THRESHOLD,
        "recent_no_shows": [
            {"id": o.id, "reservation_id": o.reservation_id, "occurred_at": isoformat(o.occurred_at)}
            for o in occurrences[:10]
        ],
    }
