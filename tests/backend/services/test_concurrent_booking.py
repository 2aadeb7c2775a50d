import threading

from backend.models.appointment import Appointment, AppointmentStatus
from backend.services import appointment_service, shift_ledger
from backend.services.errors import CapacityError


def _fire_bookings(session_factory, actor, make_input, now, attempts: int, hour: int, minute: int):
    barrier = threading.Barrier(attempts)
    booked: list[int] = []
    rejected: list[str] = []
    failures: list[BaseException] = []

    def attempt(index: int) -> None:
        db = session_factory()
        try:
            barrier.wait()
            appointment = appointment_service.create_appointment(
                db,
                make_input(hour, minute, employee_id=f'emp-{index:03d}'),
                actor,
                now=now,
            )
            booked.append(appointment.id)
        except CapacityError as exc:
            rejected.append(exc.reason)
        except BaseException as exc:
            failures.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    return booked, rejected, failures


def test_concurrent_bookings_never_exceed_slot_limit(session_factory, clinic_user, make_input, now, booking_day) -> None:
    booked, rejected, failures = _fire_bookings(
        session_factory, clinic_user, make_input, now, attempts=6, hour=8, minute=0
    )

    assert failures == []
    assert len(booked) == 2
    assert rejected == ['Slot full (2/2)'] * 4

    db = session_factory()
    try:
        stored = db.query(Appointment).filter(
            Appointment.date_index == booking_day.isoformat(),
            Appointment.time_slot == '08:00',
            Appointment.status == AppointmentStatus.SCHEDULED,
        ).count()
        assert stored == 2
        assert shift_ledger.get_capacity(db, booking_day).morning_booked == 2
    finally:
        db.close()


def test_concurrent_bookings_on_single_place_slot(session_factory, clinic_user, make_input, now) -> None:
    booked, rejected, failures = _fire_bookings(
        session_factory, clinic_user, make_input, now, attempts=4, hour=14, minute=30
    )

    assert failures == []
    assert len(booked) == 1
    assert len(rejected) == 3
