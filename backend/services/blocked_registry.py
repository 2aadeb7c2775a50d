"""Clinic-wide blocked dates and blocked (date, time slot) pairs.

Blocking is preventive only: adding a block never touches appointments that
already exist on that date or slot.
"""

import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.availability import BlockedDate, BlockedTimeSlot
from backend.services.appointment_validation import sanitize_text
from backend.services.errors import BlockValidationError, DuplicateBlockError, NotFoundError
from backend.services.slot_grid import format_time_slot, is_bookable_slot, parse_time_slot

logger = logging.getLogger(__name__)


def _clean_reason(reason: str | None) -> str:
    if not reason or not isinstance(reason, str):
        raise BlockValidationError('Reason is required.')

    cleaned = sanitize_text(reason)
    if not cleaned:
        raise BlockValidationError('Reason cannot be empty.')
    return cleaned


def _require_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, date):
        raise BlockValidationError('Invalid date.')
    return value


def _require_time_slot(time_slot: str) -> str:
    if not time_slot or not isinstance(time_slot, str):
        raise BlockValidationError('Time slot is required.')

    slot_time = parse_time_slot(time_slot)
    if slot_time is None or not is_bookable_slot(slot_time):
        raise BlockValidationError(f'Invalid time slot: {time_slot!r}.')
    return format_time_slot(slot_time)


def is_date_blocked(db: Session, blocked_date: date) -> bool:
    return db.query(BlockedDate.id).filter(BlockedDate.date == blocked_date).first() is not None


def list_blocked_dates(db: Session, from_date: date | None = None) -> list[BlockedDate]:
    query = db.query(BlockedDate)
    if from_date is not None:
        query = query.filter(BlockedDate.date >= from_date)
    return query.order_by(BlockedDate.date.asc()).all()


def add_blocked_date(db: Session, blocked_date: date, reason: str) -> BlockedDate:
    blocked_date = _require_date(blocked_date)
    cleaned_reason = _clean_reason(reason)

    if is_date_blocked(db, blocked_date):
        raise DuplicateBlockError('This date is already blocked.')

    record = BlockedDate(date=blocked_date, reason=cleaned_reason)
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateBlockError('This date is already blocked.') from exc
    db.refresh(record)

    logger.info('Blocked date %s (%s)', blocked_date.isoformat(), cleaned_reason)
    return record


def remove_blocked_date(db: Session, blocked_date_id: int) -> None:
    record = db.get(BlockedDate, blocked_date_id)
    if record is None:
        raise NotFoundError('Blocked date not found.')

    db.delete(record)
    db.commit()
    logger.info('Unblocked date %s', record.date.isoformat())


def blocked_time_slots_for_date(db: Session, blocked_date: date) -> set[str]:
    rows = db.query(BlockedTimeSlot.time_slot).filter(BlockedTimeSlot.date == blocked_date).all()
    return {time_slot for (time_slot,) in rows}


def is_time_slot_blocked(db: Session, blocked_date: date, time_slot: str) -> bool:
    slot_time = parse_time_slot(time_slot)
    if slot_time is None:
        return False

    return db.query(BlockedTimeSlot.id).filter(
        BlockedTimeSlot.date == blocked_date,
        BlockedTimeSlot.time_slot == format_time_slot(slot_time),
    ).first() is not None


def list_blocked_time_slots(db: Session, blocked_date: date | None = None) -> list[BlockedTimeSlot]:
    query = db.query(BlockedTimeSlot)
    if blocked_date is not None:
        query = query.filter(BlockedTimeSlot.date == blocked_date)
    return query.order_by(BlockedTimeSlot.date.asc(), BlockedTimeSlot.time_slot.asc()).all()


def add_blocked_time_slot(db: Session, blocked_date: date, time_slot: str, reason: str) -> BlockedTimeSlot:
    blocked_date = _require_date(blocked_date)
    normalized_slot = _require_time_slot(time_slot)
    cleaned_reason = _clean_reason(reason)

    if is_time_slot_blocked(db, blocked_date, normalized_slot):
        raise DuplicateBlockError('This time slot is already blocked.')

    record = BlockedTimeSlot(date=blocked_date, time_slot=normalized_slot, reason=cleaned_reason)
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateBlockError('This time slot is already blocked.') from exc
    db.refresh(record)

    logger.info('Blocked slot %s %s (%s)', blocked_date.isoformat(), normalized_slot, cleaned_reason)
    return record


def remove_blocked_time_slot(db: Session, blocked_time_slot_id: int) -> None:
    record = db.get(BlockedTimeSlot, blocked_time_slot_id)
    if record is None:
        raise NotFoundError('Blocked time slot not found.')

    db.delete(record)
    db.commit()
    logger.info('Unblocked slot %s %s', record.date.isoformat(), record.time_slot)
