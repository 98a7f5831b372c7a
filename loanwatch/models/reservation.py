# loanwatch/models/reservation.py
"""
Equipment reservations table.
A reservation in READY status is waiting for pickup. The no-show detector
only ever looks at that status.
"""

from sqlalchemy import Column, String, DateTime, Boolean
from loanwatch.database import Base


class ReservationStatus:
    PENDING = "pending"
    APPROVED = "approved"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no_show"


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    equipment_id = Column(String(64), nullable=False, index=True)
    equipment_name = Column(String(200))
    user_name = Column(String(200))
    user_email = Column(String(200))
    status = Column(String(20), nullable=False, index=True)
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    is_no_show = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime, index=True)

    def __repr__(self):
        return f"<Reservation {self.id} status={self.status} user={self.user_id}>"
