# loanwatch/services/repeat_offender_service.py
"""
Repeat no-show offenders: users with REPEAT_NO_SHOW_THRESHOLD or more
no-shows inside the trailing REPEAT_NO_SHOW_WINDOW_DAYS window.
Counts come from the user_no_shows log written by no_show_service.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session
from loanwatch.config import settings
from loanwatch.database import commit
from loanwatch.models.alert import AlertPriority, AlertType, QuickActionType, SourceType
from loanwatch.models.no_show import UserNoShowOccurrence
from loanwatch.models.user import User
from loanwatch.schemas.alert import AlertCreate
from loanwatch.services.alert_service import build_quick_action, create_alert, get_alert_by_source
from loanwatch.services.no_show_service import get_user_no_show_count
from loanwatch.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RepeatOffenderScanResult:
    users_checked: int = 0
    new_alerts: int = 0
    errors: list = field(default_factory=list)


def build_repeat_offender_alert(user_id: str, user: Optional[User], no_show_count: int) -> AlertCreate:
    window = settings.REPEAT_NO_SHOW_WINDOW_DAYS
    name = (user.display_name or user.email) if user else None
    return AlertCreate(
        type=AlertType.REPEAT_NO_SHOW_USER.value,
        priority=AlertPriority.HIGH,
        title="User repeatedly missed equipment pickup",
        description=f"{name or user_id} did not collect reserved equipment {no_show_count} times in the last {window} days",
        source_id=user_id,
        source_type=SourceType.USER,
        source_data={
            "user_id": user_id,
            "user_name": user.display_name if user else user_id,
            "user_email": user.email if user else None,
            "no_show_count": no_show_count,
            "period_days": window,
        },
        quick_actions=[
            build_quick_action("flag_user", "Flag user", QuickActionType.FLAG_USER, {"user_id": user_id}),
            build_quick_action("contact_user", "Contact user", QuickActionType.CONTACT_USER, {"user_id": user_id}),
            build_quick_action("dismiss", "Dismiss", QuickActionType.DISMISS, {"user_id": user_id}),
        ],
    )


async def scan_repeat_offenders(db: Session, now: Optional[datetime] = None) -> RepeatOffenderScanResult:
    now = now or datetime.utcnow()
    result = RepeatOffenderScanResult()
    cutoff = now - timedelta(days=settings.REPEAT_NO_SHOW_WINDOW_DAYS)

    rows = db.query(UserNoShowOccurrence.user_id).filter(UserNoShowOccurrence.occurred_at >= cutoff).all()
    counts = Counter(user_id for (user_id,) in rows)

    for user_id, count in counts.items():
        result.users_checked += 1
        if count < settings.REPEAT_NO_SHOW_THRESHOLD:
            continue
        try:
            existing = await get_alert_by_source(db, user_id, AlertType.REPEAT_NO_SHOW_USER.value)
            if existing:
                data = existing.source_data or {}
                if data.get("no_show_count") != count:
                    # New dict so the JSON column is marked dirty
                    existing.source_data = {**data, "no_show_count": count}
                    existing.updated_at = now
                    commit(db)
                continue

            user = db.get(User, user_id)
            write = await create_alert(db, build_repeat_offender_alert(user_id, user, count), now=now)
            if write.created:
                result.new_alerts += 1
        except Exception as e:
            db.rollback()
            logger.error(f"[REPEAT] User {user_id} failed: {e}", exc_info=True)
            result.errors.append({"user_id": user_id, "error": str(e)})

    logger.info(
        f"[REPEAT] Checked {result.users_checked} users with recent no-shows — "
        f"{result.new_alerts} new offenders, {len(result.errors)} errors"
    )
    return result


def is_repeat_no_show_offender(db: Session, user_id: str, now: Optional[datetime] = None) -> bool:
    return get_user_no_show_count(db, user_id, now=now) >= settings.REPEAT_NO_SHOW_THRESHOLD
