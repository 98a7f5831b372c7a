# loanwatch/schemas/alert.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Any
from loanwatch.models.alert import AlertPriority, SourceType


class QuickAction(BaseModel):
    id: str = Field(min_length=1)
    label: str
    action: str = Field(min_length=1)
    params: dict[str, Any] = {}


class AlertCreate(BaseModel):
    """A detected condition handed to the alert lifecycle manager."""
    type: str = Field(min_length=1)
    priority: AlertPriority = AlertPriority.MEDIUM
    title: str = Field(min_length=1)
    description: Optional[str] = None
    source_id: str = Field(min_length=1)
    source_type: SourceType
    source_data: dict[str, Any] = {}
    quick_actions: list[QuickAction] = []


class AlertOut(BaseModel):
    id: int
    type: str
    priority: str
    title: str
    description: Optional[str]
    source_id: str
    source_type: str
    source_data: dict[str, Any]
    quick_actions: list[dict[str, Any]]
    is_resolved: bool
    resolved_at: Optional[datetime]
    resolved_by: Optional[str]
    resolved_action: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AlertResolve(BaseModel):
    resolved_by: str = Field(min_length=1)
    resolved_action: str = Field(min_length=1)


class AlertResolutionOut(BaseModel):
    alert: AlertOut
    audit_write_error: Optional[str] = None


class AlertStatsOut(BaseModel):
    total: int
    resolved: int
    pending: int
    by_priority: dict[str, int]
    by_type: dict[str, int]
    resolved_today: int
    resolved_this_week: int
