from datetime import date, datetime

import pytest

from backend.models.appointment import AppointmentStatus
from backend.services import blocked_registry
from backend.services.errors import BlockValidationError, DuplicateBlockError, NotFoundError


def test_add_blocked_date_and_lookup(db, booking_day) -> None:
    record = blocked_registry.add_blocked_date(db, booking_day, 'Holiday')

    assert record.id is not None
    assert blocked_registry.is_date_blocked(db, booking_day)
    assert not blocked_registry.is_date_blocked(db, date(2025, 6, 11))


def test_add_blocked_date_accepts_datetime(db, booking_day) -> None:
    record = blocked_registry.add_blocked_date(db, datetime(2025, 6, 10, 14, 30), 'Holiday')

    assert record.date == booking_day


def test_add_blocked_date_rejects_duplicate(db, booking_day) -> None:
    blocked_registry.add_blocked_date(db, booking_day, 'Holiday')

    with pytest.raises(DuplicateBlockError) as exception_info:
        blocked_registry.add_blocked_date(db, booking_day, 'Maintenance')

    assert exception_info.value.message == 'This date is already blocked.'


@pytest.mark.parametrize('reason', [None, '', '   ', '<>'])
def test_add_blocked_date_requires_reason(db, booking_day, reason) -> None:
    with pytest.raises(BlockValidationError):
        blocked_registry.add_blocked_date(db, booking_day, reason)


def test_add_blocked_date_rejects_non_date(db) -> None:
    with pytest.raises(BlockValidationError) as exception_info:
        blocked_registry.add_blocked_date(db, '2025-06-10', 'Holiday')

    assert exception_info.value.message == 'Invalid date.'


def test_blocked_reason_is_sanitized(db, booking_day) -> None:
    record = blocked_registry.add_blocked_date(db, booking_day, 'Audit <script>alert(1)</script>visit')

    assert record.reason == 'Audit visit'


def test_list_blocked_dates_from_date(db, booking_day) -> None:
    blocked_registry.add_blocked_date(db, date(2025, 6, 1), 'Past')
    blocked_registry.add_blocked_date(db, booking_day, 'Upcoming')

    upcoming = blocked_registry.list_blocked_dates(db, from_date=date(2025, 6, 5))

    assert [record.reason for record in upcoming] == ['Upcoming']
    assert len(blocked_registry.list_blocked_dates(db)) == 2


def test_remove_blocked_date(db, booking_day) -> None:
    record = blocked_registry.add_blocked_date(db, booking_day, 'Holiday')

    blocked_registry.remove_blocked_date(db, record.id)

    assert not blocked_registry.is_date_blocked(db, booking_day)
    with pytest.raises(NotFoundError):
        blocked_registry.remove_blocked_date(db, record.id)


def test_add_blocked_time_slot_normalizes_slot(db, booking_day) -> None:
    record = blocked_registry.add_blocked_time_slot(db, booking_day, '8:00', 'Equipment calibration')

    assert record.time_slot == '08:00'
    assert blocked_registry.is_time_slot_blocked(db, booking_day, '08:00')
    assert not blocked_registry.is_time_slot_blocked(db, booking_day, '08:15')
    assert blocked_registry.blocked_time_slots_for_date(db, booking_day) == {'08:00'}


@pytest.mark.parametrize('time_slot', ['08:10', '17:00', '8h', ''])
def test_add_blocked_time_slot_rejects_off_grid(db, booking_day, time_slot: str) -> None:
    with pytest.raises(BlockValidationError):
        blocked_registry.add_blocked_time_slot(db, booking_day, time_slot, 'Calibration')


def test_add_blocked_time_slot_rejects_duplicate(db, booking_day) -> None:
    blocked_registry.add_blocked_time_slot(db, booking_day, '08:00', 'Calibration')

    with pytest.raises(DuplicateBlockError):
        blocked_registry.add_blocked_time_slot(db, booking_day, '08:00', 'Calibration again')


def test_remove_blocked_time_slot(db, booking_day) -> None:
    record = blocked_registry.add_blocked_time_slot(db, booking_day, '08:00', 'Calibration')

    blocked_registry.remove_blocked_time_slot(db, record.id)

    assert blocked_registry.list_blocked_time_slots(db, booking_day) == []


def test_blocking_does_not_touch_existing_appointments(db, book, booking_day) -> None:
    existing = book(8, 0)

    blocked_registry.add_blocked_date(db, booking_day, 'Holiday')
    blocked_registry.add_blocked_time_slot(db, booking_day, '08:00', 'Calibration')

    db.refresh(existing)
    assert existing.status == AppointmentStatus.SCHEDULED
