from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_clinic_staff
from backend.database import get_db
from backend.models.appointment import ExamShift
from backend.models.user import User
from backend.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from backend.services import blocked_registry, shift_ledger, slot_limits
from backend.services.availability import (
    AvailabilityResult,
    DayHourlyStats,
    DaySlotStats,
    check_availability,
    get_day_hourly_stats,
    get_day_slot_stats,
)
from backend.services.errors import SchedulingError
from backend.services.slot_grid import clinic_now, generate_all_time_slots

router = APIRouter(tags=['availability'])


class CreateBlockedDateRequest(BaseModel):
    date: date
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason is required.')
        return normalized


class CreateBlockedTimeSlotRequest(CreateBlockedDateRequest):
    time_slot: str


class BlockedDateResponse(BaseModel):
    id: int
    date: date
    reason: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BlockedTimeSlotResponse(BlockedDateResponse):
    time_slot: str


class SlotLimitEntry(BaseModel):
    time_slot: str
    limit: int


class SaveSlotLimitsRequest(BaseModel):
    limits: list[SlotLimitEntry]


class SlotLimitResponse(BaseModel):
    time_slot: str
    limit: int
    is_default: bool


class ShiftCapacityRequest(BaseModel):
    date: date
    morning_capacity: int
    afternoon_capacity: int


class ShiftCapacityResponse(BaseModel):
    date: date
    morning_capacity: int
    morning_booked: int
    afternoon_capacity: int
    afternoon_booked: int
    is_custom: bool

    class Config:
        from_attributes = True


def _effective_limits(db: Session) -> list[SlotLimitResponse]:
    configured = slot_limits.get_configured_limits(db)
    effective = slot_limits.resolve_limits(configured)
    return [
        SlotLimitResponse(time_slot=time_slot, limit=effective[time_slot], is_default=time_slot not in configured)
        for time_slot in generate_all_time_slots()
    ]


@router.get('/check', response_model=AvailabilityResult)
def check_slot(
    day: date = Query(..., alias='date'),
    time_slot: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return check_availability(db, day, time_slot)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/day-stats', response_model=DaySlotStats)
def day_stats(
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return get_day_slot_stats(db, day)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/hourly-stats', response_model=DayHourlyStats)
def hourly_stats(
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return get_day_hourly_stats(db, day)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/blocked-dates', response_model=list[BlockedDateResponse])
def list_blocked_dates(
    upcoming_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        from_date = clinic_now().date() if upcoming_only else None
        return blocked_registry.list_blocked_dates(db, from_date=from_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/blocked-dates', response_model=BlockedDateResponse, status_code=status.HTTP_201_CREATED)
def create_blocked_date(
    data: CreateBlockedDateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        return blocked_registry.add_blocked_date(db, data.date, data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/blocked-dates/{blocked_date_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_date(
    blocked_date_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        blocked_registry.remove_blocked_date(db, blocked_date_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/blocked-time-slots', response_model=list[BlockedTimeSlotResponse])
def list_blocked_time_slots(
    day: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return blocked_registry.list_blocked_time_slots(db, blocked_date=day)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/blocked-time-slots', response_model=BlockedTimeSlotResponse, status_code=status.HTTP_201_CREATED)
def create_blocked_time_slot(
    data: CreateBlockedTimeSlotRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        return blocked_registry.add_blocked_time_slot(db, data.date, data.time_slot, data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/blocked-time-slots/{blocked_time_slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_time_slot(
    blocked_time_slot_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        blocked_registry.remove_blocked_time_slot(db, blocked_time_slot_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/slot-limits', response_model=list[SlotLimitResponse])
def list_slot_limits(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return _effective_limits(db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/slot-limits', response_model=list[SlotLimitResponse])
def save_slot_limits(
    data: SaveSlotLimitsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        slot_limits.save_limits(db, data.limits)
        return _effective_limits(db)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/slot-limits/initialize', response_model=list[SlotLimitResponse])
def initialize_slot_limits(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        slot_limits.initialize_default_limits(db)
        return _effective_limits(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/slot-limits/{time_slot}', status_code=status.HTTP_204_NO_CONTENT)
def delete_slot_limit(
    time_slot: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        slot_limits.remove_limit(db, time_slot)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/shift-capacity', response_model=ShiftCapacityResponse)
def get_shift_capacity(
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        row = shift_ledger.get_capacity(db, day)
        if row is not None:
            return row

        defaults = shift_ledger.derived_capacities(db, day)
        return ShiftCapacityResponse(
            date=day,
            morning_capacity=defaults[ExamShift.MORNING],
            morning_booked=0,
            afternoon_capacity=defaults[ExamShift.AFTERNOON],
            afternoon_booked=0,
            is_custom=False,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/shift-capacity', response_model=ShiftCapacityResponse)
def set_shift_capacity(
    data: ShiftCapacityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        return shift_ledger.set_capacity(db, data.date, data.morning_capacity, data.afternoon_capacity)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
