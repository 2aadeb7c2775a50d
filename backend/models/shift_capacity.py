"""Shift capacity ledger model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, Integer, func
from backend.database import Base


class ShiftCapacity(Base):
    """Per-date booked counters for the morning and afternoon shifts."""
    __tablename__ = "shift_capacity"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, unique=True, index=True)
    morning_capacity = Column(Integer, nullable=False, default=0)
    morning_booked = Column(Integer, nullable=False, default=0)
    afternoon_capacity = Column(Integer, nullable=False, default=0)
    afternoon_booked = Column(Integer, nullable=False, default=0)
    # False while capacities follow the slot limit table; set once clinic staff pin them.
    is_custom = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint('morning_booked >= 0 AND morning_booked <= morning_capacity', name='ck_morning_booked'),
        CheckConstraint('afternoon_booked >= 0 AND afternoon_booked <= afternoon_capacity', name='ck_afternoon_booked'),
    )
