"""Appointment booking and lifecycle operations.

Booking admission (availability check, shift ledger increment and insert)
runs inside one transaction guarded by the (date, time slot) lock; any
rejection rolls the whole transaction back. Engine exceptions and
``SQLAlchemyError`` propagate to the caller, which decides whether to retry.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.user import ADMIN_ROLE, User
from backend.services import appointment_lifecycle, shift_ledger
from backend.services.appointment_validation import (
    MAX_DESCRIPTION_LENGTH,
    AppointmentInput,
    sanitize_text,
    validate_new_appointment,
)
from backend.services.availability import OCCUPYING_STATUSES, AvailabilityResult, check_availability
from backend.services.errors import (
    AppointmentValidationError,
    CapacityError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
)
from backend.services.slot_grid import format_time_slot, shift_for
from backend.services.slot_locks import slot_guard

logger = logging.getLogger(__name__)

# Opaque reference (URL or inline data handle) kept on the appointment.
MAX_ATTACHMENT_REFERENCE_LENGTH = 5_000_000


def _utc_now(now: datetime | None = None) -> datetime:
    return now or datetime.now(timezone.utc)


def _is_clinic(actor: User) -> bool:
    return actor.role == ADMIN_ROLE


def actor_label(actor: User) -> str:
    """Value stored in ``canceled_by``: who acted, and on whose behalf."""
    if _is_clinic(actor):
        return f'clinic:{actor.id}'
    return f'company:{actor.company_id}:{actor.id}'


def _require_clinic(actor: User, message: str) -> None:
    if not _is_clinic(actor):
        raise PermissionDeniedError(message)


def _require_access(actor: User, appointment: Appointment) -> None:
    if not _is_clinic(actor) and appointment.company_id != actor.company_id:
        raise PermissionDeniedError('This appointment belongs to another company.')


def _load(db: Session, appointment_id: int, for_update: bool = False) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update().populate_existing()

    appointment = query.first()
    if appointment is None:
        raise NotFoundError('Appointment not found.')
    return appointment


def _slot_day(appointment: Appointment) -> date:
    return date.fromisoformat(appointment.date_index)


def _admit(db: Session, day: date, time_slot: str, shift) -> AvailabilityResult:
    """Reserve one place in (day, time_slot); must run inside the caller's transaction."""
    shift_ledger.lock_day(db, day)

    result = check_availability(db, day, time_slot)
    if not result.available:
        raise CapacityError(result.reason_code, result.reason, current=result.current, limit=result.limit)

    shift_ledger.reserve(db, day, shift)
    return result


def _release_if_vacated(db: Session, appointment: Appointment, previous_status: AppointmentStatus) -> bool:
    if previous_status in OCCUPYING_STATUSES and appointment.status not in OCCUPYING_STATUSES:
        shift_ledger.release(db, _slot_day(appointment), appointment.shift)
        return True
    return False


def create_appointment(
    db: Session,
    data: AppointmentInput,
    actor: User,
    now: datetime | None = None,
) -> Appointment:
    local_start = validate_new_appointment(data, now=now)

    if not _is_clinic(actor) and data.company_id != actor.company_id:
        raise PermissionDeniedError('Companies can only book appointments for their own employees.')

    day = local_start.date()
    time_slot = format_time_slot(local_start.time())
    shift = shift_for(local_start.time())

    appointment = Appointment(
        company_id=data.company_id,
        employee_id=data.employee_id,
        exam_type_id=data.exam_type_id,
        scheduled_at=local_start,
        status=AppointmentStatus.SCHEDULED,
        shift=shift,
        date_index=day.isoformat(),
        time_slot=time_slot,
        hour_index=local_start.hour,
        year_month=local_start.strftime('%Y-%m'),
        has_additional_exams=data.has_additional_exams,
        sector=sanitize_text(data.sector),
        description=sanitize_text(data.description, MAX_DESCRIPTION_LENGTH),
        created_at=_utc_now(now),
    )

    with slot_guard(day.isoformat(), time_slot):
        try:
            result = _admit(db, day, time_slot, shift)
            db.add(appointment)
            db.commit()
        except CapacityError as exc:
            db.rollback()
            logger.warning('Booking rejected for %s %s: %s', day.isoformat(), time_slot, exc.reason)
            raise
        except SchedulingError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Booking failed for %s %s', day.isoformat(), time_slot)
            raise

    db.refresh(appointment)
    logger.info(
        'Appointment %s booked for company %s at %s %s (%d/%d)',
        appointment.id,
        appointment.company_id,
        appointment.date_index,
        appointment.time_slot,
        result.current + 1,
        result.limit,
    )
    return appointment


def get_appointment(db: Session, appointment_id: int, actor: User) -> Appointment:
    appointment = _load(db, appointment_id)
    _require_access(actor, appointment)
    return appointment


def list_appointments(
    db: Session,
    actor: User,
    company_id: str | None = None,
    status: AppointmentStatus | None = None,
    day: date | None = None,
) -> list[Appointment]:
    if not _is_clinic(actor):
        company_id = actor.company_id

    query = db.query(Appointment)
    if company_id:
        query = query.filter(Appointment.company_id == company_id)
    if status is not None:
        query = query.filter(Appointment.status == status)
    if day is not None:
        query = query.filter(Appointment.date_index == day.isoformat())

    return query.order_by(Appointment.scheduled_at.asc(), Appointment.id.asc()).all()


def change_status(
    db: Session,
    appointment_id: int,
    new_status: AppointmentStatus,
    actor: User,
    now: datetime | None = None,
) -> appointment_lifecycle.TransitionResult:
    """Move an appointment through the transition table.

    Booking companies may only cancel their own appointments; every other
    transition is reserved to clinic staff. Vacating a slot releases the
    shift ledger in the same transaction.
    """
    try:
        appointment = _load(db, appointment_id, for_update=True)
        if not _is_clinic(actor):
            _require_access(actor, appointment)
            if new_status != AppointmentStatus.CANCELED:
                raise PermissionDeniedError('Companies can only cancel appointments.')

        result = appointment_lifecycle.apply_transition(
            appointment,
            new_status,
            actor_id=actor_label(actor),
            now=_utc_now(now),
        )
        _release_if_vacated(db, appointment, result.previous_status)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info(
        'Appointment %s: %s -> %s by %s (%s)',
        appointment.id,
        result.previous_status.value,
        appointment.status.value,
        actor_label(actor),
        ', '.join(effect.value for effect in result.side_effects) or 'no side effects',
    )
    return result


def cancel_appointment(
    db: Session,
    appointment_id: int,
    actor: User,
    now: datetime | None = None,
) -> appointment_lifecycle.TransitionResult:
    return change_status(db, appointment_id, AppointmentStatus.CANCELED, actor, now=now)


def update_appointment_details(
    db: Session,
    appointment_id: int,
    actor: User,
    sector: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise AppointmentValidationError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')

    try:
        appointment = _load(db, appointment_id, for_update=True)
        _require_access(actor, appointment)

        if sector is not None:
            appointment.sector = sanitize_text(sector)
        if description is not None:
            appointment.description = sanitize_text(description, MAX_DESCRIPTION_LENGTH)
        appointment.updated_at = _utc_now(now)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(appointment)
    return appointment


def attach_file(
    db: Session,
    appointment_id: int,
    attachment_url: str,
    attachment_name: str,
    actor: User,
    now: datetime | None = None,
) -> Appointment:
    if not attachment_url or not isinstance(attachment_url, str):
        raise AppointmentValidationError('Invalid attachment reference.')
    if len(attachment_url) > MAX_ATTACHMENT_REFERENCE_LENGTH:
        raise AppointmentValidationError('Attachment is too large.')

    cleaned_name = sanitize_text(attachment_name)
    if not cleaned_name:
        raise AppointmentValidationError('Invalid attachment name.')

    try:
        appointment = _load(db, appointment_id, for_update=True)
        _require_access(actor, appointment)
        appointment_lifecycle.ensure_attachments_manageable(appointment)

        appointment.attachment_url = attachment_url
        appointment.attachment_name = cleaned_name
        appointment.updated_at = _utc_now(now)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info('Attachment %s added to appointment %s', cleaned_name, appointment.id)
    return appointment


def remove_file(db: Session, appointment_id: int, actor: User, now: datetime | None = None) -> Appointment:
    try:
        appointment = _load(db, appointment_id, for_update=True)
        _require_access(actor, appointment)
        appointment_lifecycle.ensure_attachments_manageable(appointment)

        appointment.attachment_url = None
        appointment.attachment_name = None
        appointment.updated_at = _utc_now(now)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(appointment)
    return appointment


def archive_appointment(
    db: Session,
    appointment_id: int,
    actor: User,
    now: datetime | None = None,
) -> appointment_lifecycle.TransitionResult:
    _require_clinic(actor, 'Only the clinic can archive appointments.')

    try:
        appointment = _load(db, appointment_id, for_update=True)
        result = appointment_lifecycle.archive(appointment, now=_utc_now(now))
        _release_if_vacated(db, appointment, result.previous_status)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(appointment)
    return result


def archive_appointments_by_status(
    db: Session,
    status: AppointmentStatus,
    actor: User,
    now: datetime | None = None,
) -> int:
    """Archive every appointment currently in ``status`` (a terminal status)."""
    _require_clinic(actor, 'Only the clinic can archive appointments.')
    if status not in appointment_lifecycle.ARCHIVABLE_STATUSES:
        raise AppointmentValidationError(f'Appointments with status {status.value} cannot be archived.')

    stamp = _utc_now(now)
    try:
        appointments = db.query(Appointment).filter(Appointment.status == status).with_for_update().all()
        for appointment in appointments:
            result = appointment_lifecycle.archive(appointment, now=stamp)
            _release_if_vacated(db, appointment, result.previous_status)
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info('Archived %d %s appointments', len(appointments), status.value)
    return len(appointments)


def restore_appointment(
    db: Session,
    appointment_id: int,
    actor: User,
    now: datetime | None = None,
) -> appointment_lifecycle.TransitionResult:
    """Bring an archived appointment back to the status it was archived from.

    A restored appointment that occupies its slot again is re-admitted through
    the same availability check as a new booking.
    """
    _require_clinic(actor, 'Only the clinic can restore archived appointments.')

    appointment = _load(db, appointment_id)
    day, time_slot = _slot_day(appointment), appointment.time_slot
    # The slot lock is always taken before a write transaction starts.
    db.rollback()

    with slot_guard(day.isoformat(), time_slot):
        try:
            appointment = _load(db, appointment_id, for_update=True)
            if appointment.original_status in OCCUPYING_STATUSES:
                _admit(db, day, time_slot, appointment.shift)
            result = appointment_lifecycle.restore(appointment, now=_utc_now(now))
            db.commit()
        except (SchedulingError, SQLAlchemyError):
            db.rollback()
            raise

    db.refresh(appointment)
    logger.info('Appointment %s restored to %s', appointment.id, appointment.status.value)
    return result


def _delete_rows(db: Session, appointments: list[Appointment]) -> int:
    for appointment in appointments:
        if appointment.status in OCCUPYING_STATUSES:
            shift_ledger.release(db, _slot_day(appointment), appointment.shift)
        db.delete(appointment)
    return len(appointments)


def delete_appointment(db: Session, appointment_id: int, actor: User) -> None:
    _require_clinic(actor, 'Only the clinic can delete appointments.')

    try:
        appointment = _load(db, appointment_id, for_update=True)
        _delete_rows(db, [appointment])
        db.commit()
    except (SchedulingError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info('Appointment %s deleted', appointment_id)


def clear_appointments_by_status(db: Session, status: AppointmentStatus, actor: User) -> int:
    _require_clinic(actor, 'Only the clinic can clear appointments.')

    try:
        deleted = _delete_rows(db, db.query(Appointment).filter(Appointment.status == status).with_for_update().all())
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Cleared %d %s appointments', deleted, status.value)
    return deleted


def clear_all_appointments(db: Session, actor: User) -> int:
    _require_clinic(actor, 'Only the clinic can clear appointments.')

    try:
        deleted = _delete_rows(db, db.query(Appointment).with_for_update().all())
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.warning('Cleared all %d appointments', deleted)
    return deleted
