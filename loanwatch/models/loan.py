# loanwatch/models/loan.py
"""
Loan requests table.
Written by the loan workflow (outside this service); read by the overdue
detector, the reliability scorer and the report aggregator.
"""

from sqlalchemy import Column, String, DateTime
from loanwatch.database import Base


class LoanStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class Loan(Base):
    __tablename__ = "loans"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    equipment_id = Column(String(64), nullable=False, index=True)
    # Denormalised at request time so alerts can be built without joins
    equipment_name = Column(String(200))
    user_name = Column(String(200))
    user_email = Column(String(200))
    status = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime, index=True)
    approved_at = Column(DateTime)
    rejected_at = Column(DateTime)
    borrow_date = Column(DateTime)
    expected_return_date = Column(DateTime)
    actual_return_date = Column(DateTime)

    def __repr__(self):
        return f"<Loan {self.id} status={self.status} user={self.user_id}>"
