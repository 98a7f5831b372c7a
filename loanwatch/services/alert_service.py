# loanwatch/services/alert_service.py
"""
Alert lifecycle: create (deduplicated), escalate, resolve, query.
Used by overdue_service, no_show_service and repeat_offender_service, and by
the alerts router for admin actions.

State machine per alert:
    open ──escalate (toward critical only)──▶ open ──resolve──▶ resolved (terminal)

Dedup is check-then-insert. Two overlapping runs of the same detector can
both pass the check; the partial unique index on open (source_id, type)
makes the second insert fail and create_alert folds that into escalation.
Same-detector scans should still be serialised by the scheduler.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from loanwatch.database import commit
from loanwatch.models.alert import Alert, AlertAuditLog, AlertPriority, priority_order
from loanwatch.schemas.alert import AlertCreate
from loanwatch.utils.errors import (
    AlertAlreadyResolvedError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from loanwatch.utils.logger import get_logger
from loanwatch.utils.timeutils import start_of_day

logger = get_logger(__name__)


@dataclass
class AlertWriteResult:
    alert: Alert
    created: bool = False
    escalated: bool = False


@dataclass
class ResolutionOutcome:
    """Resolution is the primary effect; the audit row is best-effort."""
    alert: Alert
    audit_write_error: Optional[str] = None


def build_quick_action(action_id: str, label: str, action, params: Optional[dict] = None) -> dict:
    return {
        "id": action_id,
        "label": label,
        "action": getattr(action, "value", action),
        "params": params or {},
    }


def _validate_fact(fact: Union[AlertCreate, dict]) -> AlertCreate:
    if isinstance(fact, AlertCreate):
        return fact
    try:
        return AlertCreate.model_validate(fact)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid alert: {e}") from e


def _apply_escalation(alert: Alert, new_priority, now: datetime) -> bool:
    """Raise alert.priority in place. Never downgrades, never touches resolved alerts."""
    try:
        new_priority = AlertPriority(new_priority)
    except ValueError as e:
        raise ValidationError(f"Unknown priority: {new_priority!r}") from e
    if alert.is_resolved or new_priority.order >= priority_order(alert.priority):
        return False
    old = alert.priority
    alert.priority = new_priority.value
    alert.updated_at = now
    logger.warning(f"[ALERT][ESCALATED] #{alert.id} {alert.type} {old} → {new_priority.value}")
    return True


async def get_alert_by_id(db: Session, alert_id: int) -> Optional[Alert]:
    return db.get(Alert, alert_id)


async def get_alert_by_source(db: Session, source_id: str, alert_type: str) -> Optional[Alert]:
    """The open alert for (source_id, type), if any."""
    return db.query(Alert).filter(
        Alert.source_id == source_id,
        Alert.type == alert_type,
        Alert.is_resolved == False,  # noqa: E712
    ).first()


async def _escalate_existing(db: Session, existing: Alert, fact: AlertCreate, now: datetime) -> AlertWriteResult:
    escalated = _apply_escalation(existing, fact.priority, now)
    if escalated:
        # Snapshot reflects the state that caused the escalation
        existing.title = fact.title
        existing.description = fact.description
        existing.source_data = fact.source_data
        commit(db)
    return AlertWriteResult(alert=existing, created=False, escalated=escalated)


async def create_alert(db: Session, fact: Union[AlertCreate, dict], now: Optional[datetime] = None) -> AlertWriteResult:
    """
    Persist a new alert. If an open alert already exists for the same
    (source_id, type), attempt an escalation instead. Callers must check
    result.created rather than assume a fresh alert on every call.
    """
    fact = _validate_fact(fact)
    now = now or datetime.utcnow()

    existing = await get_alert_by_source(db, fact.source_id, fact.type)
    if existing:
        return await _escalate_existing(db, existing, fact, now)

    alert = Alert(
        type=fact.type,
        priority=fact.priority.value,
        title=fact.title,
        description=fact.description,
        source_id=fact.source_id,
        source_type=fact.source_type.value,
        source_data=fact.source_data,
        quick_actions=[qa.model_dump() for qa in fact.quick_actions],
        is_resolved=False,
        created_at=now,
        updated_at=now,
    )
    db.add(alert)
    try:
        commit(db)
    except IntegrityError:
        # Lost the race against a concurrent writer for the same key
        existing = await get_alert_by_source(db, fact.source_id, fact.type)
        if existing is None:
            raise
        logger.warning(f"[ALERT] Concurrent insert for {fact.type}/{fact.source_id} — using #{existing.id}")
        return await _escalate_existing(db, existing, fact, now)

    logger.warning(f"[ALERT][{fact.type.upper()}][{fact.priority.value}] {fact.title}")
    return AlertWriteResult(alert=alert, created=True)


async def escalate_alert(db: Session, alert_id: int, new_priority, now: Optional[datetime] = None) -> Alert:
    """Move an open alert toward critical. A same-or-lower priority is a no-op."""
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found")
    if _apply_escalation(alert, new_priority, now or datetime.utcnow()):
        commit(db)
    return alert


async def resolve_alert(
    db: Session,
    alert_id: int,
    resolved_by: str,
    resolved_action: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ResolutionOutcome:
    """
    Mark an alert resolved, then write one audit log row.
    Resolving twice is rejected with AlertAlreadyResolvedError.
    An audit write failure is logged and reported on the outcome; the
    resolution itself stays committed.
    """
    if not resolved_by:
        raise ValidationError("resolved_by is required")

    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found")
    if alert.is_resolved:
        raise AlertAlreadyResolvedError(
            f"Alert {alert_id} was already resolved by {alert.resolved_by} at {alert.resolved_at}"
        )

    now = now or datetime.utcnow()
    alert.is_resolved = True
    alert.resolved_at = now
    alert.resolved_by = resolved_by
    alert.resolved_action = resolved_action
    alert.updated_at = now
    commit(db)
    logger.info(f"[ALERT] #{alert.id} {alert.type} resolved by {resolved_by} ({resolved_action})")

    audit_error = None
    try:
        db.add(AlertAuditLog(
            alert_id=alert.id,
            alert_type=alert.type,
            alert_priority=alert.priority,
            alert_title=alert.title,
            source_id=alert.source_id,
            source_type=alert.source_type,
            resolved_by=resolved_by,
            resolved_action=resolved_action,
            resolved_at=now,
            created_at=now,
        ))
        commit(db)
    except (TransientStoreError, SQLAlchemyError) as e:
        audit_error = str(e)
        logger.error(f"[ALERT] Audit log write failed for alert #{alert_id}: {e}", exc_info=True)

    return ResolutionOutcome(alert=alert, audit_write_error=audit_error)


async def list_active_alerts(
    db: Session,
    alert_type: Optional[str] = None,
    priority: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[Alert]:
    """Open alerts, critical first; newest first within the same priority."""
    q = db.query(Alert).filter(Alert.is_resolved == False)  # noqa: E712
    if alert_type:
        q = q.filter(Alert.type == alert_type)
    if priority:
        q = q.filter(Alert.priority == priority)
    q = q.order_by(Alert.created_at.desc(), Alert.id.desc())
    if limit:
        q = q.limit(limit)
    # sorted() is stable, so the recency order survives inside each priority
    return sorted(q.all(), key=lambda a: priority_order(a.priority))


def empty_alert_stats() -> dict:
    return {
        "total": 0,
        "resolved": 0,
        "pending": 0,
        "by_priority": {p.value: 0 for p in AlertPriority},
        "by_type": {},
        "resolved_today": 0,
        "resolved_this_week": 0,
    }


async def get_alert_stats(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Backlog counters. by_priority counts pending alerts only.
    "This week" is the rolling window starting at midnight seven days ago.
    """
    now = now or datetime.utcnow()
    today_start = start_of_day(now)
    week_start = start_of_day(now - timedelta(days=7))

    stats = empty_alert_stats()
    for alert in db.query(Alert).all():
        stats["total"] += 1
        if alert.is_resolved:
            stats["resolved"] += 1
            if alert.resolved_at and alert.resolved_at >= today_start:
                stats["resolved_today"] += 1
            if alert.resolved_at and alert.resolved_at >= week_start:
                stats["resolved_this_week"] += 1
        else:
            stats["pending"] += 1
            if alert.priority in stats["by_priority"]:
                stats["by_priority"][alert.priority] += 1
        stats["by_type"][alert.type] = stats["by_type"].get(alert.type, 0) + 1
    return stats
