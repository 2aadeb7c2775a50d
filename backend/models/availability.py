"""Clinic-wide blocking model definitions."""

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint, func
from backend.database import Base


class BlockedDate(Base):
    """A calendar day on which no bookings are accepted."""
    __tablename__ = "blocked_dates"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, unique=True, index=True)
    reason = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BlockedTimeSlot(Base):
    """A single (date, time slot) pair closed independently of the day."""
    __tablename__ = "blocked_time_slots"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, index=True)
    time_slot = Column(String(5), nullable=False)
    reason = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('date', 'time_slot', name='uq_blocked_time_slot'),
    )
