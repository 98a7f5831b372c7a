# loanwatch/models/equipment.py
"""
Equipment catalogue. Only active items are included in utilization analysis.
"""

from sqlalchemy import Column, String, DateTime, Boolean
from loanwatch.database import Base


class Equipment(Base):
    __tablename__ = "equipment"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime)

    def __repr__(self):
        return f"<Equipment {self.id} name={self.name} active={self.is_active}>"
