"""Per-slot booking limits with a banded default curve."""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.slot_limit import SlotLimit
from backend.services.errors import NotFoundError, SlotLimitValidationError
from backend.services.slot_grid import (
    format_time_slot,
    generate_all_time_slots,
    is_bookable_slot,
    parse_time_slot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitBand:
    name: str
    start: time
    end: time
    limit: int

    def contains(self, slot_time: time) -> bool:
        return self.start <= slot_time < self.end


# Ordered; the first band containing the slot wins. Early and late morning differ on purpose.
DEFAULT_LIMIT_BANDS = (
    LimitBand('early_morning', time(6, 0), time(10, 0), 2),
    LimitBand('late_morning', time(10, 0), time(12, 0), 1),
    LimitBand('afternoon', time(12, 0), time(16, 0), 1),
    LimitBand('end_of_day', time(16, 0), time(17, 0), 1),
)
OUT_OF_BAND_LIMIT = 0


def default_limit_for(time_slot: str) -> int:
    slot_time = parse_time_slot(time_slot)
    if slot_time is None:
        return OUT_OF_BAND_LIMIT

    for band in DEFAULT_LIMIT_BANDS:
        if band.contains(slot_time):
            return band.limit

    return OUT_OF_BAND_LIMIT


def _require_grid_slot(time_slot: str) -> str:
    slot_time = parse_time_slot(time_slot)
    if slot_time is None or not is_bookable_slot(slot_time):
        raise SlotLimitValidationError(f'Invalid time slot: {time_slot!r}.')
    return format_time_slot(slot_time)


def list_configured_limits(db: Session) -> list[SlotLimit]:
    return db.query(SlotLimit).order_by(SlotLimit.time_slot.asc()).all()


def get_configured_limits(db: Session) -> dict[str, int]:
    return {time_slot: limit for time_slot, limit in db.query(SlotLimit.time_slot, SlotLimit.limit).all()}


def get_limit(db: Session, time_slot: str) -> int:
    """Configured limit for ``time_slot``, falling back to the default curve."""
    slot_time = parse_time_slot(time_slot)
    normalized = format_time_slot(slot_time) if slot_time else time_slot
    configured = db.query(SlotLimit.limit).filter(SlotLimit.time_slot == normalized).scalar()
    if configured is None:
        return default_limit_for(normalized)
    return configured


def resolve_limits(configured: dict[str, int]) -> dict[str, int]:
    return {
        time_slot: configured.get(time_slot, default_limit_for(time_slot))
        for time_slot in generate_all_time_slots()
    }


def get_limits(db: Session) -> dict[str, int]:
    """Effective limit for every slot of the day."""
    return resolve_limits(get_configured_limits(db))


def _validate_limit_entries(limits) -> list[tuple[str, int]]:
    entries: list[tuple[str, int]] = []
    seen: set[str] = set()

    for entry in limits:
        time_slot = entry['time_slot'] if isinstance(entry, dict) else entry.time_slot
        limit = entry['limit'] if isinstance(entry, dict) else entry.limit

        normalized = _require_grid_slot(time_slot)
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise SlotLimitValidationError(f'Limit for {normalized} must be an integer.')
        if limit < 0:
            raise SlotLimitValidationError(f'Limit for {normalized} cannot be negative.')
        if normalized in seen:
            raise SlotLimitValidationError(f'Time slot {normalized} appears more than once.')

        seen.add(normalized)
        entries.append((normalized, limit))

    return entries


def save_limits(db: Session, limits) -> list[SlotLimit]:
    """Bulk upsert of ``{time_slot, limit}`` entries in one transaction.

    A limit of 0 is stored as-is and closes the slot. The whole payload is
    validated before anything is written.
    """
    entries = _validate_limit_entries(limits)
    if not entries:
        return []

    now = datetime.now(timezone.utc)
    existing = {
        row.time_slot: row
        for row in db.query(SlotLimit).filter(SlotLimit.time_slot.in_([slot for slot, _ in entries])).all()
    }

    saved: list[SlotLimit] = []
    try:
        for time_slot, limit in entries:
            row = existing.get(time_slot)
            if row is None:
                row = SlotLimit(time_slot=time_slot, limit=limit, updated_at=now)
                db.add(row)
            else:
                row.limit = limit
                row.updated_at = now
            saved.append(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Saved %d slot limits', len(saved))
    return saved


def remove_limit(db: Session, time_slot: str) -> None:
    """Drop the configured limit so the slot goes back to the default curve."""
    normalized = _require_grid_slot(time_slot)
    row = db.query(SlotLimit).filter(SlotLimit.time_slot == normalized).first()
    if row is None:
        raise NotFoundError(f'No limit configured for {normalized}.')

    db.delete(row)
    db.commit()
    logger.info('Removed slot limit for %s, default %d applies', normalized, default_limit_for(normalized))


def initialize_default_limits(db: Session) -> list[SlotLimit]:
    return save_limits(
        db,
        [{'time_slot': time_slot, 'limit': default_limit_for(time_slot)} for time_slot in generate_all_time_slots()],
    )
