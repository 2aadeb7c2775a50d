"""Appointment model definitions."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text, func
from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    ARCHIVED = "archived"


class ExamShift(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"


def _enum_values(enum_class) -> list[str]:
    return [member.value for member in enum_class]


class Appointment(Base):
    """Represents an exam booked by a company for one of its employees."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), nullable=False, index=True)
    employee_id = Column(String(64), nullable=False)
    exam_type_id = Column(String(64), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(AppointmentStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    shift = Column(Enum(ExamShift, native_enum=False, length=10, values_callable=_enum_values), nullable=False)

    # Derived from scheduled_at in clinic local time; used for slot occupancy queries.
    date_index = Column(String(10), nullable=False)
    time_slot = Column(String(5), nullable=False)
    hour_index = Column(Integer, nullable=False)
    year_month = Column(String(7), nullable=False)

    has_additional_exams = Column(Boolean, nullable=False, default=False)
    sector = Column(String(500), nullable=False, default='')
    description = Column(Text, nullable=False, default='')
    attachment_url = Column(Text)
    attachment_name = Column(String(500))

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    canceled_at = Column(DateTime(timezone=True))
    canceled_by = Column(String(160))
    archived_at = Column(DateTime(timezone=True))
    original_status = Column(Enum(AppointmentStatus, native_enum=False, length=20, values_callable=_enum_values))

    def __repr__(self):
        return f"<Appointment {self.id} {self.date_index} {self.time_slot} {self.status}>"
