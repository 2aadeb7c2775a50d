"""Exceptions raised by the scheduling engine.

Routes translate these into HTTP responses; the engine itself never builds
HTTP errors. Infrastructure failures (``SQLAlchemyError``) are not wrapped and
propagate unchanged to the caller.
"""

import enum


class SchedulingError(Exception):
    """Base class for every rejection produced by the engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AppointmentValidationError(SchedulingError):
    """Appointment input is incomplete or breaks a booking rule."""


class SlotLimitValidationError(SchedulingError):
    """Slot limit payload is malformed (off-grid slot, negative limit, ...)."""


class BlockValidationError(SchedulingError):
    """Blocked date / time slot input is malformed."""


class ShiftCapacityValidationError(SchedulingError):
    pass


class InvalidTimeSlotError(SchedulingError):
    """A time slot string that is not a clock time at all (``'8h'``, ``'25:00'``)."""


class UnavailableReason(str, enum.Enum):
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    DATE_BLOCKED = "date_blocked"
    SLOT_BLOCKED = "slot_blocked"
    NO_CAPACITY = "no_capacity"
    SLOT_FULL = "slot_full"
    SHIFT_FULL = "shift_full"


class CapacityError(SchedulingError):
    """The requested slot cannot be admitted."""

    def __init__(self, code: UnavailableReason, reason: str, current: int = 0, limit: int = 0):
        super().__init__(reason)
        self.code = code
        self.reason = reason
        self.current = current
        self.limit = limit


class InvalidTransitionError(SchedulingError):
    def __init__(self, current_status, new_status):
        super().__init__(f'Cannot change appointment status from {current_status.value} to {new_status.value}.')
        self.current_status = current_status
        self.new_status = new_status


class AttachmentNotAllowedError(SchedulingError):
    """Attachments can only be managed while the appointment is still scheduled."""


class PermissionDeniedError(SchedulingError):
    pass


class NotFoundError(SchedulingError):
    pass


class DuplicateBlockError(SchedulingError):
    pass
