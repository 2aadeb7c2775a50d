"""Slot availability resolver.

``check_availability`` and ``get_day_slot_stats`` both go through
``_evaluate_slot``; they only differ in where the facts come from (live
queries for one slot, a preloaded snapshot for a whole day).
"""

import logging
from collections import Counter
from datetime import date

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.services import blocked_registry, slot_limits
from backend.services.errors import InvalidTimeSlotError, UnavailableReason
from backend.services.slot_grid import (
    AFTERNOON_START_HOUR,
    LAST_START_TIME,
    OPEN_TIME,
    format_time_slot,
    generate_all_time_slots,
    is_bookable_slot,
    parse_time_slot,
)

logger = logging.getLogger(__name__)

# Only these statuses hold a place in a slot; canceled, no-show and archived ones free it.
OCCUPYING_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED)

BUSINESS_HOURS_REASON = (
    f'Outside business hours ({OPEN_TIME.strftime("%H:%M")} - {LAST_START_TIME.strftime("%H:%M")}, '
    'every 15 minutes)'
)


class AvailabilityResult(BaseModel):
    available: bool
    reason: str | None = None
    reason_code: UnavailableReason | None = None
    current: int
    limit: int


class SlotAvailability(BaseModel):
    time_slot: str
    limit: int
    current: int
    available: bool
    occupancy_rate: int
    reason: str | None = None
    reason_code: UnavailableReason | None = None


class DaySlotStats(BaseModel):
    date: date
    slots: list[SlotAvailability]
    total_available: int
    total_booked: int


class HourlySlotStats(BaseModel):
    hour: int
    current: int
    limit: int
    available: bool


class DayHourlyStats(BaseModel):
    date: date
    morning_total: int
    afternoon_total: int
    hourly_stats: list[HourlySlotStats]


class _LiveSource:
    """Answers each question with its own query, only when it is asked."""

    def __init__(self, db: Session, day: date):
        self.db = db
        self.day = day

    def date_blocked(self) -> bool:
        return blocked_registry.is_date_blocked(self.db, self.day)

    def slot_blocked(self, time_slot: str) -> bool:
        return blocked_registry.is_time_slot_blocked(self.db, self.day, time_slot)

    def limit(self, time_slot: str) -> int:
        return slot_limits.get_limit(self.db, time_slot)

    def occupancy(self, time_slot: str) -> int:
        return count_appointments_for_slot(self.db, self.day, time_slot)


class _DaySnapshot:
    """Every fact for one day, loaded up front with one query per kind."""

    def __init__(self, db: Session, day: date):
        self._date_blocked = blocked_registry.is_date_blocked(db, day)
        self._blocked_slots = blocked_registry.blocked_time_slots_for_date(db, day)
        self._limits = slot_limits.get_limits(db)
        self._occupancy = occupancy_by_slot(db, day)

    def date_blocked(self) -> bool:
        return self._date_blocked

    def slot_blocked(self, time_slot: str) -> bool:
        return time_slot in self._blocked_slots

    def limit(self, time_slot: str) -> int:
        return self._limits.get(time_slot, slot_limits.default_limit_for(time_slot))

    def occupancy(self, time_slot: str) -> int:
        return self._occupancy.get(time_slot, 0)


def count_appointments_for_slot(db: Session, day: date, time_slot: str) -> int:
    return db.query(func.count(Appointment.id)).filter(
        Appointment.date_index == day.isoformat(),
        Appointment.time_slot == time_slot,
        Appointment.status.in_(OCCUPYING_STATUSES),
    ).scalar() or 0


def occupancy_by_slot(db: Session, day: date) -> dict[str, int]:
    rows = db.query(Appointment.time_slot, func.count(Appointment.id)).filter(
        Appointment.date_index == day.isoformat(),
        Appointment.status.in_(OCCUPYING_STATUSES),
    ).group_by(Appointment.time_slot).all()
    return {time_slot: count for time_slot, count in rows}


def _evaluate_slot(time_slot: str, source) -> AvailabilityResult:
    slot_time = parse_time_slot(time_slot)
    if slot_time is None or not is_bookable_slot(slot_time):
        return AvailabilityResult(
            available=False,
            reason=BUSINESS_HOURS_REASON,
            reason_code=UnavailableReason.OUTSIDE_BUSINESS_HOURS,
            current=0,
            limit=0,
        )

    if source.date_blocked():
        return AvailabilityResult(
            available=False,
            reason='Date is blocked for appointments',
            reason_code=UnavailableReason.DATE_BLOCKED,
            current=0,
            limit=0,
        )

    if source.slot_blocked(time_slot):
        return AvailabilityResult(
            available=False,
            reason=f'Time slot {time_slot} is blocked for appointments',
            reason_code=UnavailableReason.SLOT_BLOCKED,
            current=0,
            limit=0,
        )

    limit = source.limit(time_slot)
    current = source.occupancy(time_slot)

    if limit == 0:
        return AvailabilityResult(
            available=False,
            reason='Slot has no configured capacity',
            reason_code=UnavailableReason.NO_CAPACITY,
            current=current,
            limit=limit,
        )

    if current >= limit:
        return AvailabilityResult(
            available=False,
            reason=f'Slot full ({current}/{limit})',
            reason_code=UnavailableReason.SLOT_FULL,
            current=current,
            limit=limit,
        )

    return AvailabilityResult(available=True, current=current, limit=limit)


def check_availability(db: Session, day: date, time_slot: str) -> AvailabilityResult:
    """Decide whether one more appointment fits in (day, time_slot) right now."""
    slot_time = parse_time_slot(time_slot)
    if slot_time is None:
        raise InvalidTimeSlotError(f'Invalid time slot: {time_slot!r}.')

    result = _evaluate_slot(format_time_slot(slot_time), _LiveSource(db, day))
    if not result.available:
        logger.debug('Slot %s %s unavailable: %s', day.isoformat(), time_slot, result.reason)
    return result


def _occupancy_rate(current: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return (current * 200 + limit) // (limit * 2)


def get_day_slot_stats(db: Session, day: date) -> DaySlotStats:
    snapshot = _DaySnapshot(db, day)
    slots: list[SlotAvailability] = []

    for time_slot in generate_all_time_slots():
        result = _evaluate_slot(time_slot, snapshot)
        slots.append(
            SlotAvailability(
                time_slot=time_slot,
                limit=result.limit,
                current=result.current,
                available=result.available,
                occupancy_rate=_occupancy_rate(result.current, result.limit),
                reason=result.reason,
                reason_code=result.reason_code,
            )
        )

    return DaySlotStats(
        date=day,
        slots=slots,
        total_available=sum(1 for slot in slots if slot.available),
        total_booked=sum(slot.current for slot in slots),
    )


def get_day_hourly_stats(db: Session, day: date) -> DayHourlyStats:
    """Day stats folded into hour buckets, plus per-shift booked totals."""
    day_stats = get_day_slot_stats(db, day)
    buckets: dict[int, Counter] = {}

    for slot in day_stats.slots:
        hour = parse_time_slot(slot.time_slot).hour
        bucket = buckets.setdefault(hour, Counter())
        bucket['current'] += slot.current
        bucket['limit'] += slot.limit
        bucket['available'] += int(slot.available)

    hourly_stats = [
        HourlySlotStats(
            hour=hour,
            current=bucket['current'],
            limit=bucket['limit'],
            available=bucket['available'] > 0,
        )
        for hour, bucket in sorted(buckets.items())
    ]

    return DayHourlyStats(
        date=day,
        morning_total=sum(h.current for h in hourly_stats if h.hour < AFTERNOON_START_HOUR),
        afternoon_total=sum(h.current for h in hourly_stats if h.hour >= AFTERNOON_START_HOUR),
        hourly_stats=hourly_stats,
    )
