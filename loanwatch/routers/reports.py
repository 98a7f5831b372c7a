# loanwatch/routers/reports.py
"""Scheduled report snapshots — generate, browse, view/download tracking, retention."""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
from loanwatch.database import get_db
from loanwatch.models.report import ReportType
from loanwatch.schemas.report import ReportOut, ReportSummaryOut, ReportViewed
from loanwatch.services import report_service

router = APIRouter()


@router.post("/reports/daily-summary/generate", response_model=ReportOut, summary="Generate (or regenerate) a daily summary")
async def generate_daily(report_date: Optional[datetime] = None, db: Session = Depends(get_db)):
    return await report_service.generate_daily_summary(db, report_date)


@router.post("/reports/weekly-utilization/generate", response_model=ReportOut,
             summary="Generate (or regenerate) a weekly utilization report")
async def generate_weekly(report_date: Optional[datetime] = None, db: Session = Depends(get_db)):
    return await report_service.generate_weekly_utilization(db, report_date)


@router.post("/reports/{report_type}/ensure", response_model=ReportOut, summary="Current period's report, generated if missing")
async def ensure_report(report_type: str, db: Session = Depends(get_db)):
    return await report_service.ensure_report_exists(db, report_type)


@router.get("/reports/summary", response_model=ReportSummaryOut)
def get_summary(db: Session = Depends(get_db)):
    return report_service.get_report_summary(db)


@router.get("/reports/history", response_model=list[ReportOut], summary="Reports, newest first")
def get_history(report_type: Optional[str] = None, limit: Optional[int] = None, db: Session = Depends(get_db)):
    return report_service.get_report_history(db, report_type=report_type, limit=limit)


@router.get("/reports/latest/{report_type}", response_model=ReportOut)
def get_latest(report_type: str, db: Session = Depends(get_db)):
    report = report_service.get_latest_report(db, report_type)
    if not report:
        raise HTTPException(status_code=404, detail=f"No {report_type} report yet")
    return report


@router.get("/reports/{report_id}/export", summary="Download report data as JSON")
def export_report(report_id: str, db: Session = Depends(get_db)):
    """Only the report's data is exported. Each call counts as one download."""
    payload = report_service.export_report_to_json(db, report_id)
    return Response(
        content=payload,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{report_id}.json"'},
    )


@router.get("/reports/{report_type}/{period}", response_model=ReportOut)
def get_report(report_type: str, period: str, db: Session = Depends(get_db)):
    if report_type not in ReportType.ALL:
        raise HTTPException(status_code=404, detail=f"Unknown report type '{report_type}'")
    report = report_service.get_report(db, report_type, period)
    if not report:
        raise HTTPException(status_code=404, detail=f"No {report_type} report for {period}")
    return report


@router.post("/reports/{report_id}/viewed", response_model=ReportOut, summary="Record that an admin opened a report")
def mark_viewed(report_id: str, body: ReportViewed, db: Session = Depends(get_db)):
    return report_service.mark_report_viewed(db, report_id, body.admin_id)


@router.delete("/reports/cleanup", summary="Delete reports older than the retention window")
def cleanup(days_to_keep: Optional[int] = None, db: Session = Depends(get_db)):
    deleted = report_service.cleanup_old_reports(db, days_to_keep)
    return {"deleted": deleted, "status": "ok"}
