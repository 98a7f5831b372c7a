# loanwatch/routers/alerts.py
"""Alert backlog — list, stats, overdue summary and resolve endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from loanwatch.database import get_db
from loanwatch.schemas.alert import AlertOut, AlertResolutionOut, AlertResolve, AlertStatsOut
from loanwatch.services import alert_service, overdue_service

router = APIRouter()


@router.get("/alerts", response_model=list[AlertOut], summary="Active alerts — critical first")
async def get_active_alerts(
    alert_type: Optional[str] = None,
    priority: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Unresolved alerts. Filter by alert_type or priority; newest first within a priority."""
    return await alert_service.list_active_alerts(db, alert_type=alert_type, priority=priority, limit=limit)


@router.get("/alerts/stats", response_model=AlertStatsOut, summary="Alert backlog counters")
async def get_alert_stats(db: Session = Depends(get_db)):
    return await alert_service.get_alert_stats(db)


@router.get("/alerts/overdue-summary", summary="Open overdue alerts grouped by priority")
async def get_overdue_summary(db: Session = Depends(get_db)):
    return await overdue_service.get_daily_overdue_summary(db)


@router.get("/alerts/{alert_id}", response_model=AlertOut)
async def get_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = await alert_service.get_alert_by_id(db, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    return alert


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResolutionOut, summary="Resolve an alert")
async def resolve_alert(alert_id: int, body: AlertResolve, db: Session = Depends(get_db)):
    """
    Mark an alert resolved and write the audit row.
    409 if the alert was already resolved. audit_write_error is set when the
    resolution succeeded but the audit row could not be written.
    """
    outcome = await alert_service.resolve_alert(db, alert_id, body.resolved_by, body.resolved_action)
    return {"alert": outcome.alert, "audit_write_error": outcome.audit_write_error}
