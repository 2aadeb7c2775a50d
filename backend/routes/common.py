from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from backend.database import ensure_appointment_schema
from backend.services.errors import (
    AttachmentNotAllowedError,
    CapacityError,
    DuplicateBlockError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_CONFLICT_ERRORS = (InvalidTransitionError, AttachmentNotAllowedError, DuplicateBlockError)


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, CapacityError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={'code': exc.code.value, 'reason': exc.reason},
        )
    if isinstance(exc, _CONFLICT_ERRORS):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)

    # Everything else is an input validation failure.
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
