# loanwatch/schemas/report.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Any


class ReportOut(BaseModel):
    id: str
    report_type: str
    period: str
    data: dict[str, Any]
    status: str
    generated_at: datetime
    updated_at: Optional[datetime]
    viewed_by: list[str]
    download_count: int

    class Config:
        from_attributes = True


class ReportViewed(BaseModel):
    admin_id: str


class ReportSummaryOut(BaseModel):
    latest_daily: Optional[ReportOut]
    latest_weekly: Optional[ReportOut]
    has_today_report: bool
    has_this_week_report: bool
    total_daily_reports: int
    total_weekly_reports: int
    last_updated: datetime
