from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_clinic_staff
from backend.database import get_db
from backend.models.appointment import AppointmentStatus, ExamShift
from backend.models.user import User
from backend.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from backend.services import appointment_service
from backend.services.appointment_lifecycle import SideEffect, TransitionResult
from backend.services.appointment_validation import AppointmentInput
from backend.services.errors import SchedulingError

router = APIRouter(tags=['appointments'])


class UpdateAppointmentRequest(BaseModel):
    sector: str | None = None
    description: str | None = None


class ChangeStatusRequest(BaseModel):
    status: AppointmentStatus


class AttachmentRequest(BaseModel):
    attachment_url: str
    attachment_name: str

    @field_validator('attachment_name')
    @classmethod
    def validate_attachment_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Attachment name is required.')
        return normalized


class BulkStatusRequest(BaseModel):
    status: AppointmentStatus


class ClearAppointmentsRequest(BaseModel):
    status: AppointmentStatus | None = None


class AppointmentResponse(BaseModel):
    id: int
    company_id: str
    employee_id: str
    exam_type_id: str
    scheduled_at: datetime
    status: AppointmentStatus
    shift: ExamShift
    date_index: str
    time_slot: str
    has_additional_exams: bool
    sector: str
    description: str
    attachment_url: str | None = None
    attachment_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None
    canceled_by: str | None = None
    archived_at: datetime | None = None
    original_status: AppointmentStatus | None = None

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    appointment: AppointmentResponse
    previous_status: AppointmentStatus
    side_effects: list[SideEffect]


class BulkOperationResponse(BaseModel):
    affected: int


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        previous_status=result.previous_status,
        side_effects=result.side_effects,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentInput,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.create_appointment(db, data, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    company_id: str | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    day: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.list_appointments(
            db,
            current_user,
            company_id=company_id,
            status=appointment_status,
            day=day,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/archive', response_model=BulkOperationResponse)
def archive_appointments(
    data: BulkStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        archived = appointment_service.archive_appointments_by_status(db, data.status, current_user)
        return BulkOperationResponse(affected=archived)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/clear', response_model=BulkOperationResponse)
def clear_appointments(
    data: ClearAppointmentsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        if data.status is None:
            deleted = appointment_service.clear_all_appointments(db, current_user)
        else:
            deleted = appointment_service.clear_appointments_by_status(db, data.status, current_user)
        return BulkOperationResponse(affected=deleted)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.get_appointment(db, appointment_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.update_appointment_details(
            db,
            appointment_id,
            current_user,
            sector=data.sector,
            description=data.description,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        appointment_service.delete_appointment(db, appointment_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/status', response_model=TransitionResponse)
def change_appointment_status(
    appointment_id: int,
    data: ChangeStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = appointment_service.change_status(db, appointment_id, data.status, current_user)
        return _transition_response(result)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=TransitionResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = appointment_service.cancel_appointment(db, appointment_id, current_user)
        return _transition_response(result)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{appointment_id}/attachment', response_model=AppointmentResponse)
def attach_file(
    appointment_id: int,
    data: AttachmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.attach_file(
            db,
            appointment_id,
            data.attachment_url,
            data.attachment_name,
            current_user,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/{appointment_id}/attachment', response_model=AppointmentResponse)
def remove_file(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return appointment_service.remove_file(db, appointment_id, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/archive', response_model=TransitionResponse)
def archive_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        result = appointment_service.archive_appointment(db, appointment_id, current_user)
        return _transition_response(result)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/restore', response_model=TransitionResponse)
def restore_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_clinic_staff),
):
    ensure_database_ready()

    try:
        result = appointment_service.restore_appointment(db, appointment_id, current_user)
        return _transition_response(result)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
