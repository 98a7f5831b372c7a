# loanwatch/models/alert.py
"""
Alerts table (the admin attention backlog produced by the detectors)
plus the immutable audit trail written on resolution.

At most one unresolved alert may exist per (source_id, type). The partial
unique index below makes the database reject a second open row; a resolved
alert for the same key may coexist with a new open one.
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, Index, text
from loanwatch.database import Base


class AlertType(str, Enum):
    OVERDUE_LOAN = "overdue_loan"
    NO_SHOW_RESERVATION = "no_show_reservation"
    REPEAT_NO_SHOW_USER = "repeat_no_show_user"
    HIGH_DEMAND_EQUIPMENT = "high_demand_equipment"
    IDLE_EQUIPMENT = "idle_equipment"
    LOW_RELIABILITY_USER = "low_reliability_user"


class AlertPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def order(self) -> int:
        """Lower is more severe."""
        return _PRIORITY_ORDER[self]


_PRIORITY_ORDER = {
    AlertPriority.CRITICAL: 0,
    AlertPriority.HIGH: 1,
    AlertPriority.MEDIUM: 2,
    AlertPriority.LOW: 3,
}


def priority_order(priority) -> int:
    """Ordinal for a stored priority string. Unknown values sort after LOW."""
    try:
        return AlertPriority(priority).order
    except ValueError:
        return len(_PRIORITY_ORDER)


class SourceType(str, Enum):
    LOAN = "loan"
    RESERVATION = "reservation"
    EQUIPMENT = "equipment"
    USER = "user"


class QuickActionType(str, Enum):
    SEND_REMINDER = "send_reminder"
    MARK_CONTACTED = "mark_contacted"
    CANCEL_RESERVATION = "cancel_reservation"
    EXTEND_PICKUP = "extend_pickup"
    CONTACT_USER = "contact_user"
    FLAG_USER = "flag_user"
    DISMISS = "dismiss"


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(50), nullable=False, index=True)
    priority = Column(String(20), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text)
    source_id = Column(String(64), nullable=False)
    source_type = Column(String(20), nullable=False)
    source_data = Column(JSON, nullable=False, default=dict)     # Snapshot, never re-fetched
    quick_actions = Column(JSON, nullable=False, default=list)
    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    resolved_at = Column(DateTime)
    resolved_by = Column(String(64))
    resolved_action = Column(String(50))
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index(
            "uq_alerts_open_source",
            "source_id",
            "type",
            unique=True,
            postgresql_where=text("is_resolved = false"),
            sqlite_where=text("is_resolved = 0"),
        ),
    )

    def __repr__(self):
        return f"<Alert {self.id} type={self.type} priority={self.priority} resolved={self.is_resolved}>"


class AlertAuditLog(Base):
    __tablename__ = "alert_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Integer, nullable=False, index=True)
    alert_type = Column(String(50), nullable=False)
    alert_priority = Column(String(20), nullable=False)   # Priority at resolution time
    alert_title = Column(String(300))
    source_id = Column(String(64))
    source_type = Column(String(20))
    resolved_by = Column(String(64), nullable=False)
    resolved_action = Column(String(50))
    resolved_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<AlertAuditLog {self.id} alert={self.alert_id} by={self.resolved_by}>"
