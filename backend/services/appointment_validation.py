"""Input validation for new appointments.

Everything here runs before the store is touched; each failure raises
``AppointmentValidationError`` whose message is shown to the caller as-is.
"""

import re
from datetime import datetime

from pydantic import BaseModel, field_validator

from backend.models.appointment import AppointmentStatus
from backend.services.errors import AppointmentValidationError
from backend.services.slot_grid import (
    ADDITIONAL_EXAMS_END_TIME,
    ADDITIONAL_EXAMS_START_TIME,
    LAST_START_TIME,
    OPEN_TIME,
    SLOT_INCREMENT_MINUTES,
    clinic_now,
    is_on_grid,
    is_within_additional_exams_window,
    is_within_operating_hours,
    to_clinic_time,
)

MAX_TEXT_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 1000
REQUIRED_FIELDS = ('company_id', 'employee_id', 'exam_type_id', 'scheduled_at', 'status')

_SCRIPT_TAG = re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE)
_JAVASCRIPT_SCHEME = re.compile(r'javascript:', re.IGNORECASE)
_EVENT_HANDLER = re.compile(r'on\w+=', re.IGNORECASE)


def sanitize_text(value: str | None, max_length: int = MAX_TEXT_LENGTH) -> str:
    if not isinstance(value, str):
        return ''

    cleaned = _SCRIPT_TAG.sub('', value.strip())
    cleaned = _JAVASCRIPT_SCHEME.sub('', cleaned)
    cleaned = _EVENT_HANDLER.sub('', cleaned)
    cleaned = cleaned.replace('<', '').replace('>', '')
    return cleaned[:max_length].strip()


class AppointmentInput(BaseModel):
    company_id: str | None = None
    employee_id: str | None = None
    exam_type_id: str | None = None
    scheduled_at: datetime | None = None
    status: AppointmentStatus | None = AppointmentStatus.SCHEDULED
    has_additional_exams: bool = False
    sector: str | None = None
    description: str | None = None

    @field_validator('company_id', 'employee_id', 'exam_type_id')
    @classmethod
    def strip_identifier(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


def validate_required_fields(data: AppointmentInput) -> None:
    missing = [field for field in REQUIRED_FIELDS if getattr(data, field) in (None, '')]
    if missing:
        raise AppointmentValidationError(f'Missing required fields: {", ".join(missing)}.')


def validate_initial_status(data: AppointmentInput) -> None:
    if data.status != AppointmentStatus.SCHEDULED:
        raise AppointmentValidationError('New appointments must start as scheduled.')


def validate_appointment_datetime(scheduled_at: datetime, now: datetime | None = None) -> datetime:
    """Check the clinic-local start time; returns it for the derived index fields."""
    local_start = to_clinic_time(scheduled_at)
    today = to_clinic_time(now or clinic_now()).date()

    if local_start.date() < today:
        raise AppointmentValidationError('Appointments cannot be scheduled on past dates.')

    if not is_within_operating_hours(local_start.time().replace(second=0, microsecond=0)):
        raise AppointmentValidationError(
            f'Appointment time is outside clinic hours '
            f'({OPEN_TIME.strftime("%H:%M")} - {LAST_START_TIME.strftime("%H:%M")}).'
        )

    if not is_on_grid(local_start.time()):
        raise AppointmentValidationError(f'Appointments must start on {SLOT_INCREMENT_MINUTES}-minute boundaries.')

    return local_start


def validate_additional_exams_time(has_additional_exams: bool, local_start: datetime) -> None:
    if not has_additional_exams:
        return

    if not is_within_additional_exams_window(local_start.time()):
        raise AppointmentValidationError(
            'Appointments with additional exams can only be scheduled between '
            f'{ADDITIONAL_EXAMS_START_TIME.strftime("%H:%M")} and {ADDITIONAL_EXAMS_END_TIME.strftime("%H:%M")}.'
        )


def validate_free_text(data: AppointmentInput) -> None:
    if data.description and len(data.description) > MAX_DESCRIPTION_LENGTH:
        raise AppointmentValidationError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')


def validate_new_appointment(data: AppointmentInput, now: datetime | None = None) -> datetime:
    """Run every creation rule in order and return the clinic-local start time."""
    validate_required_fields(data)
    validate_initial_status(data)
    local_start = validate_appointment_datetime(data.scheduled_at, now=now)
    validate_additional_exams_time(data.has_additional_exams, local_start)
    validate_free_text(data)
    return local_start
