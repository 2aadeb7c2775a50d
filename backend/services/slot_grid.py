"""Booking grid constants and time-slot helpers.

The operating window and the additional-exam window are business constants,
not configuration: every slot string the engine stores or compares is a
zero-padded ``HH:MM`` value on the 15-minute grid produced here.
"""

import re
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from backend.core import config
from backend.models.appointment import ExamShift

OPEN_TIME = time(6, 30)
LAST_START_TIME = time(16, 45)
SLOT_INCREMENT_MINUTES = 15
ADDITIONAL_EXAMS_START_TIME = time(6, 30)
ADDITIONAL_EXAMS_END_TIME = time(12, 0)
AFTERNOON_START_HOUR = 12

_TIME_SLOT_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def clinic_timezone() -> ZoneInfo:
    return ZoneInfo(config.CLINIC_TIMEZONE)


def clinic_now() -> datetime:
    return datetime.now(clinic_timezone())


def to_clinic_time(moment: datetime) -> datetime:
    """Return ``moment`` in clinic local time; naive values are taken as already local."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=clinic_timezone())
    return moment.astimezone(clinic_timezone())


def format_time_slot(slot_time: time) -> str:
    return f'{slot_time.hour:02d}:{slot_time.minute:02d}'


def parse_time_slot(value: str) -> time | None:
    """Parse ``H:MM``/``HH:MM``; returns None for anything that is not a clock time."""
    if not isinstance(value, str):
        return None

    match = _TIME_SLOT_PATTERN.match(value.strip())
    if not match:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def normalize_time_slot(value: str) -> str | None:
    parsed = parse_time_slot(value)
    return format_time_slot(parsed) if parsed else None


def is_on_grid(slot_time: time) -> bool:
    return slot_time.minute % SLOT_INCREMENT_MINUTES == 0 and slot_time.second == 0 and slot_time.microsecond == 0


def is_within_operating_hours(slot_time: time) -> bool:
    return OPEN_TIME <= slot_time <= LAST_START_TIME


def is_bookable_slot(slot_time: time) -> bool:
    return is_within_operating_hours(slot_time) and is_on_grid(slot_time)


def is_within_additional_exams_window(slot_time: time) -> bool:
    return ADDITIONAL_EXAMS_START_TIME <= slot_time < ADDITIONAL_EXAMS_END_TIME


@lru_cache(maxsize=1)
def _all_time_slots() -> tuple[str, ...]:
    slots = []
    current = datetime.combine(date.min, OPEN_TIME)
    last = datetime.combine(date.min, LAST_START_TIME)

    while current <= last:
        slots.append(format_time_slot(current.time()))
        current += timedelta(minutes=SLOT_INCREMENT_MINUTES)

    return tuple(slots)


def generate_all_time_slots() -> list[str]:
    """Every bookable slot of a day, 06:30 through 16:45."""
    return list(_all_time_slots())


def shift_for(slot_time: time) -> ExamShift:
    return ExamShift.MORNING if slot_time.hour < AFTERNOON_START_HOUR else ExamShift.AFTERNOON


def slots_for_shift(shift: ExamShift) -> list[str]:
    return [slot for slot in _all_time_slots() if shift_for(parse_time_slot(slot)) == shift]
