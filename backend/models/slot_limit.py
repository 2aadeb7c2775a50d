"""Slot limit model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from backend.database import Base


class SlotLimit(Base):
    """Maximum simultaneous bookings for a time of day, applied to every date."""
    __tablename__ = "slot_limits"

    id = Column(Integer, primary_key=True)
    time_slot = Column(String(5), nullable=False, unique=True, index=True)
    limit = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint('"limit" >= 0', name='ck_slot_limit_non_negative'),
    )
