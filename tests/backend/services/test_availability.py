from datetime import date

import pytest

from backend.services import appointment_service, blocked_registry, slot_limits
from backend.services.availability import (
    BUSINESS_HOURS_REASON,
    check_availability,
    count_appointments_for_slot,
    get_day_hourly_stats,
    get_day_slot_stats,
)
from backend.services.errors import CapacityError, InvalidTimeSlotError, UnavailableReason
from backend.services.slot_grid import generate_all_time_slots


@pytest.mark.parametrize('time_slot', ['06:15', '17:00', '08:10', '23:59'])
def test_off_hours_or_off_grid_slot_is_unavailable(db, booking_day, time_slot: str) -> None:
    result = check_availability(db, booking_day, time_slot)

    assert result.available is False
    assert result.reason == BUSINESS_HOURS_REASON
    assert result.reason_code == UnavailableReason.OUTSIDE_BUSINESS_HOURS
    assert (result.current, result.limit) == (0, 0)


def test_unparseable_slot_raises(db, booking_day) -> None:
    with pytest.raises(InvalidTimeSlotError):
        check_availability(db, booking_day, '8h')


def test_open_slot_reports_limit(db, booking_day) -> None:
    result = check_availability(db, booking_day, '8:00')

    assert result.available is True
    assert result.reason is None
    assert (result.current, result.limit) == (0, 2)


def test_blocked_date_closes_every_slot(db, booking_day) -> None:
    blocked_registry.add_blocked_date(db, booking_day, 'Holiday')

    for time_slot in generate_all_time_slots():
        result = check_availability(db, booking_day, time_slot)
        assert result.available is False
        assert result.reason_code == UnavailableReason.DATE_BLOCKED

    assert get_day_slot_stats(db, booking_day).total_available == 0


def test_blocked_time_slot_closes_only_that_slot(db, booking_day) -> None:
    blocked_registry.add_blocked_time_slot(db, booking_day, '09:00', 'Calibration')

    blocked = check_availability(db, booking_day, '09:00')
    assert blocked.available is False
    assert blocked.reason_code == UnavailableReason.SLOT_BLOCKED
    assert check_availability(db, booking_day, '09:15').available is True
    assert check_availability(db, date(2025, 6, 11), '09:00').available is True


def test_zero_limit_closes_slot(db, booking_day) -> None:
    slot_limits.save_limits(db, [{'time_slot': '13:00', 'limit': 0}])

    result = check_availability(db, booking_day, '13:00')

    assert result.available is False
    assert result.reason_code == UnavailableReason.NO_CAPACITY
    assert result.limit == 0


def test_limit_two_scenario_with_cancel_and_rebook(db, book, clinic_user, booking_day) -> None:
    first = book(8, 0, employee_id='emp-001')
    book(8, 0, employee_id='emp-002')

    full = check_availability(db, booking_day, '08:00')
    assert full.available is False
    assert full.reason == 'Slot full (2/2)'
    assert full.reason_code == UnavailableReason.SLOT_FULL

    with pytest.raises(CapacityError) as exception_info:
        book(8, 0, employee_id='emp-003')
    assert exception_info.value.reason == 'Slot full (2/2)'
    assert count_appointments_for_slot(db, booking_day, '08:00') == 2

    appointment_service.cancel_appointment(db, first.id, clinic_user)

    reopened = check_availability(db, booking_day, '08:00')
    assert reopened.available is True
    assert reopened.current == 1

    third = book(8, 0, employee_id='emp-003')
    assert third.time_slot == '08:00'
    assert count_appointments_for_slot(db, booking_day, '08:00') == 2


def test_day_stats_totals_match_per_slot_checks(db, book, booking_day) -> None:
    book(8, 0)
    book(8, 0, employee_id='emp-002')
    book(13, 0)
    blocked_registry.add_blocked_time_slot(db, booking_day, '10:00', 'Calibration')
    slot_limits.save_limits(db, [{'time_slot': '15:00', 'limit': 0}])

    stats = get_day_slot_stats(db, booking_day)
    per_slot = [check_availability(db, booking_day, time_slot) for time_slot in generate_all_time_slots()]

    assert stats.total_available == sum(1 for result in per_slot if result.available)
    assert stats.total_booked == sum(result.current for result in per_slot)
    assert stats.total_available == 42 - 4
    assert stats.total_booked == 3

    by_slot = {slot.time_slot: slot for slot in stats.slots}
    assert by_slot['08:00'].occupancy_rate == 100
    assert by_slot['13:00'].occupancy_rate == 100
    assert by_slot['09:00'].occupancy_rate == 0


def test_occupancy_rate_rounds_half_up(db, book, booking_day) -> None:
    slot_limits.save_limits(db, [{'time_slot': '08:00', 'limit': 3}])
    book(8, 0)

    stats = get_day_slot_stats(db, booking_day)

    assert next(slot for slot in stats.slots if slot.time_slot == '08:00').occupancy_rate == 33


def test_hourly_stats_fold_slots_into_hours(db, book, booking_day) -> None:
    book(8, 0)
    book(8, 30)
    book(14, 15)

    stats = get_day_hourly_stats(db, booking_day)
    by_hour = {bucket.hour: bucket for bucket in stats.hourly_stats}

    assert [bucket.hour for bucket in stats.hourly_stats] == list(range(6, 17))
    assert by_hour[8].current == 2
    assert by_hour[8].limit == 8
    assert by_hour[6].limit == 4
    assert by_hour[14].current == 1
    assert stats.morning_total == 2
    assert stats.afternoon_total == 1
