# loanwatch/models/no_show.py
"""
Append-only no-show log. One row per newly detected no-show reservation.
Rolling-window counts for repeat offender detection are computed from here.
Rows are never updated or deleted.
"""

from sqlalchemy import Column, Integer, String, DateTime
from loanwatch.database import Base


class UserNoShowOccurrence(Base):
    __tablename__ = "user_no_shows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    reservation_id = Column(String(64))
    occurred_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<UserNoShowOccurrence {self.id} user={self.user_id} at={self.occurred_at}>"
