"""Appointment status state machine.

Every status change goes through ``apply_transition``, which enforces the
transition table and applies the field side effects in one place. Archiving
is a separate housekeeping path (``archive``/``restore``) that never goes
through the standard table.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
import enum

from backend.models.appointment import Appointment, AppointmentStatus
from backend.services.errors import AttachmentNotAllowedError, InvalidTransitionError

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
    AppointmentStatus.ARCHIVED: frozenset(),
}

ARCHIVABLE_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW})


class SideEffect(str, enum.Enum):
    COMPLETED_AT_STAMPED = "completed_at_stamped"
    CANCELED_AT_STAMPED = "canceled_at_stamped"
    ATTACHMENT_CLEARED = "attachment_cleared"
    ARCHIVED_AT_STAMPED = "archived_at_stamped"
    ARCHIVE_CLEARED = "archive_cleared"


@dataclass
class TransitionResult:
    appointment: Appointment
    previous_status: AppointmentStatus
    side_effects: list[SideEffect] = field(default_factory=list)

    @property
    def new_status(self) -> AppointmentStatus:
        return self.appointment.status


def can_transition(current_status: AppointmentStatus, new_status: AppointmentStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


def can_manage_attachments(status: AppointmentStatus) -> bool:
    return status == AppointmentStatus.SCHEDULED


def ensure_attachments_manageable(appointment: Appointment) -> None:
    if not can_manage_attachments(appointment.status):
        raise AttachmentNotAllowedError(
            f'Attachments cannot be changed on {appointment.status.value} appointments.'
        )


def _clear_attachment(appointment: Appointment, side_effects: list[SideEffect]) -> None:
    if appointment.attachment_url is not None or appointment.attachment_name is not None:
        appointment.attachment_url = None
        appointment.attachment_name = None
        side_effects.append(SideEffect.ATTACHMENT_CLEARED)


def apply_transition(
    appointment: Appointment,
    new_status: AppointmentStatus,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    previous_status = appointment.status
    if not can_transition(previous_status, new_status):
        raise InvalidTransitionError(previous_status, new_status)

    now = now or datetime.now(timezone.utc)
    side_effects: list[SideEffect] = []

    appointment.status = new_status
    appointment.updated_at = now

    if new_status == AppointmentStatus.COMPLETED:
        appointment.completed_at = now
        side_effects.append(SideEffect.COMPLETED_AT_STAMPED)

    if new_status == AppointmentStatus.CANCELED:
        appointment.canceled_at = now
        appointment.canceled_by = actor_id
        side_effects.append(SideEffect.CANCELED_AT_STAMPED)

    if previous_status == AppointmentStatus.SCHEDULED:
        _clear_attachment(appointment, side_effects)

    return TransitionResult(appointment=appointment, previous_status=previous_status, side_effects=side_effects)


def archive(appointment: Appointment, now: datetime | None = None) -> TransitionResult:
    previous_status = appointment.status
    if previous_status not in ARCHIVABLE_STATUSES:
        raise InvalidTransitionError(previous_status, AppointmentStatus.ARCHIVED)

    now = now or datetime.now(timezone.utc)
    # completed_at and canceled_at stay; while archived they follow original_status.
    appointment.original_status = previous_status
    appointment.status = AppointmentStatus.ARCHIVED
    appointment.archived_at = now
    appointment.updated_at = now

    return TransitionResult(
        appointment=appointment,
        previous_status=previous_status,
        side_effects=[SideEffect.ARCHIVED_AT_STAMPED],
    )


def restore(appointment: Appointment, now: datetime | None = None) -> TransitionResult:
    previous_status = appointment.status
    if previous_status != AppointmentStatus.ARCHIVED or appointment.original_status is None:
        raise InvalidTransitionError(previous_status, appointment.original_status or AppointmentStatus.SCHEDULED)

    appointment.status = appointment.original_status
    appointment.original_status = None
    appointment.archived_at = None
    appointment.updated_at = now or datetime.now(timezone.utc)

    return TransitionResult(
        appointment=appointment,
        previous_status=previous_status,
        side_effects=[SideEffect.ARCHIVE_CLEARED],
    )
