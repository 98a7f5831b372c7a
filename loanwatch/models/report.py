# loanwatch/models/report.py
"""
Scheduled report snapshots (daily summary, weekly utilization).
Keyed by "{report_type}_{period}"; regenerating a period overwrites the row.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from loanwatch.database import Base


class ReportType:
    DAILY_SUMMARY = "daily_summary"
    WEEKLY_UTILIZATION = "weekly_utilization"

    ALL = (DAILY_SUMMARY, WEEKLY_UTILIZATION)


class ReportStatus:
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduledReport(Base):
    __tablename__ = "scheduled_reports"
    __table_args__ = (UniqueConstraint("report_type", "period", name="uq_report_type_period"),)

    id = Column(String(80), primary_key=True)
    report_type = Column(String(50), nullable=False, index=True)
    period = Column(String(20), nullable=False)
    data = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=ReportStatus.COMPLETED)
    generated_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime)
    viewed_by = Column(JSON, nullable=False, default=list)
    download_count = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<ScheduledReport {self.id} generated={self.generated_at}>"
