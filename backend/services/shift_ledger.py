"""Per-date booked counters for the morning and afternoon shifts.

Counters only move through single conditional UPDATE statements, so the
``0 <= booked <= capacity`` check and the write happen atomically in the
store. Callers own the transaction: nothing here commits except
``set_capacity``.
"""

import logging
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.appointment import ExamShift
from backend.models.shift_capacity import ShiftCapacity
from backend.services.availability import occupancy_by_slot
from backend.services.errors import CapacityError, ShiftCapacityValidationError, UnavailableReason
from backend.services.slot_grid import slots_for_shift
from backend.services.slot_limits import get_limits

logger = logging.getLogger(__name__)

_COLUMNS = {
    ExamShift.MORNING: (ShiftCapacity.morning_booked, ShiftCapacity.morning_capacity),
    ExamShift.AFTERNOON: (ShiftCapacity.afternoon_booked, ShiftCapacity.afternoon_capacity),
}


def derived_capacities(db: Session, day: date | None = None) -> dict[ExamShift, int]:
    """Shift ceilings implied by the slot limit table.

    With ``day``, a slot already holding more bookings than its limit counts at
    its occupancy, so lowering one slot's limit never takes room from the others.
    """
    limits = get_limits(db)
    occupancy = occupancy_by_slot(db, day) if day is not None else {}
    return {
        shift: sum(max(limits[time_slot], occupancy.get(time_slot, 0)) for time_slot in slots_for_shift(shift))
        for shift in ExamShift
    }


def get_capacity(db: Session, day: date) -> ShiftCapacity | None:
    return db.query(ShiftCapacity).filter(ShiftCapacity.date == day).first()


def list_capacities(db: Session) -> list[ShiftCapacity]:
    return db.query(ShiftCapacity).order_by(ShiftCapacity.date.asc()).all()


def _ensure_row(db: Session, day: date) -> None:
    if db.query(ShiftCapacity.id).filter(ShiftCapacity.date == day).first() is not None:
        return

    defaults = derived_capacities(db, day)
    try:
        with db.begin_nested():
            db.add(
                ShiftCapacity(
                    date=day,
                    morning_capacity=defaults[ExamShift.MORNING],
                    morning_booked=0,
                    afternoon_capacity=defaults[ExamShift.AFTERNOON],
                    afternoon_booked=0,
                    is_custom=False,
                )
            )
    except IntegrityError:
        # Another transaction created the row first.
        logger.debug('Shift capacity row for %s created concurrently', day.isoformat())


def _follow_slot_table(db: Session, row: ShiftCapacity) -> None:
    if row.is_custom:
        return

    defaults = derived_capacities(db, row.date)
    row.morning_capacity = max(defaults[ExamShift.MORNING], row.morning_booked)
    row.afternoon_capacity = max(defaults[ExamShift.AFTERNOON], row.afternoon_booked)
    db.flush()


def lock_day(db: Session, day: date) -> ShiftCapacity:
    """Create the ledger row if needed and lock it for the rest of the transaction."""
    _ensure_row(db, day)
    row = (
        db.query(ShiftCapacity)
        .filter(ShiftCapacity.date == day)
        .with_for_update()
        .populate_existing()
        .one()
    )
    _follow_slot_table(db, row)
    return row


def reserve(db: Session, day: date, shift: ExamShift) -> None:
    _ensure_row(db, day)
    booked, capacity = _COLUMNS[shift]

    result = db.execute(
        update(ShiftCapacity)
        .where(ShiftCapacity.date == day, booked < capacity)
        .values({booked: booked + 1})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        row = get_capacity(db, day)
        db.refresh(row)
        current, ceiling = getattr(row, booked.key), getattr(row, capacity.key)
        raise CapacityError(
            UnavailableReason.SHIFT_FULL,
            f'{shift.value.capitalize()} shift full ({current}/{ceiling})',
            current=current,
            limit=ceiling,
        )


def release(db: Session, day: date, shift: ExamShift) -> None:
    booked, _capacity = _COLUMNS[shift]

    result = db.execute(
        update(ShiftCapacity)
        .where(ShiftCapacity.date == day, booked > 0)
        .values({booked: booked - 1})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning('No %s booking to release on %s', shift.value, day.isoformat())


def is_capacity_available(db: Session, day: date, shift: ExamShift) -> bool:
    row = get_capacity(db, day)
    if row is None:
        return derived_capacities(db, day)[shift] > 0

    booked, capacity = _COLUMNS[shift]
    return getattr(row, booked.key) < getattr(row, capacity.key)


def _require_capacity(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ShiftCapacityValidationError(f'{label} capacity must be an integer.')
    if value < 0:
        raise ShiftCapacityValidationError(f'{label} capacity cannot be negative.')
    return value


def set_capacity(db: Session, day: date, morning_capacity: int, afternoon_capacity: int) -> ShiftCapacity:
    """Pin explicit shift ceilings for ``day``; they stop following the slot table."""
    morning_capacity = _require_capacity(morning_capacity, 'Morning')
    afternoon_capacity = _require_capacity(afternoon_capacity, 'Afternoon')

    try:
        row = lock_day(db, day)
        if morning_capacity < row.morning_booked:
            raise ShiftCapacityValidationError(
                f'Morning capacity cannot be lower than the {row.morning_booked} appointments already booked.'
            )
        if afternoon_capacity < row.afternoon_booked:
            raise ShiftCapacityValidationError(
                f'Afternoon capacity cannot be lower than the {row.afternoon_booked} appointments already booked.'
            )

        row.morning_capacity = morning_capacity
        row.afternoon_capacity = afternoon_capacity
        row.is_custom = True
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(row)
    logger.info('Shift capacity for %s set to %d/%d', day.isoformat(), morning_capacity, afternoon_capacity)
    return row
