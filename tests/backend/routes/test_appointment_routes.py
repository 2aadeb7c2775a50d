from datetime import datetime

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from backend.auth import jwt_handler
from backend.database import get_db
from backend.main import app
from backend.models.appointment import AppointmentStatus
from backend.models.user import ADMIN_ROLE, COMPANY_ROLE, User
from backend.routes.appointment_routes import (
    AttachmentRequest,
    BulkStatusRequest,
    ChangeStatusRequest,
    archive_appointments,
    attach_file,
    cancel_appointment,
    change_appointment_status,
    create_appointment,
    get_appointment,
)
from backend.services.appointment_validation import AppointmentInput

FUTURE_DAY = '2099-06-10'


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('backend.routes.availability_routes.ensure_database_ready', lambda: None)


def _future_input(hour: int = 8, minute: int = 0, **overrides) -> AppointmentInput:
    fields = {
        'company_id': 'acme',
        'employee_id': 'emp-001',
        'exam_type_id': 'periodic',
        'scheduled_at': datetime(2099, 6, 10, hour, minute),
    }
    fields.update(overrides)
    return AppointmentInput(**fields)


def test_create_appointment_rejects_past_date(db, clinic_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_future_input(scheduled_at=datetime(2020, 1, 6, 8, 0)), db=db, current_user=clinic_user)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Appointments cannot be scheduled on past dates.'


def test_create_appointment_full_slot_returns_capacity_detail(db, clinic_user) -> None:
    create_appointment(_future_input(employee_id='emp-001'), db=db, current_user=clinic_user)
    create_appointment(_future_input(employee_id='emp-002'), db=db, current_user=clinic_user)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_future_input(employee_id='emp-003'), db=db, current_user=clinic_user)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == {'code': 'slot_full', 'reason': 'Slot full (2/2)'}


def test_company_booking_for_other_company_is_forbidden(db, company_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_future_input(company_id='globex'), db=db, current_user=company_user)

    assert exception_info.value.status_code == 403


def test_cancel_route_returns_side_effects(db, clinic_user, company_user) -> None:
    appointment = create_appointment(_future_input(), db=db, current_user=clinic_user)
    attach_file(
        appointment.id,
        AttachmentRequest(attachment_url='https://files.test/aso.pdf', attachment_name='aso.pdf'),
        db=db,
        current_user=company_user,
    )

    response = cancel_appointment(appointment.id, db=db, current_user=company_user)

    assert response.previous_status == AppointmentStatus.SCHEDULED
    assert response.appointment.status == AppointmentStatus.CANCELED
    assert response.appointment.attachment_url is None
    assert [effect.value for effect in response.side_effects] == ['canceled_at_stamped', 'attachment_cleared']


def test_invalid_transition_returns_409(db, clinic_user) -> None:
    appointment = create_appointment(_future_input(), db=db, current_user=clinic_user)
    change_appointment_status(
        appointment.id,
        ChangeStatusRequest(status=AppointmentStatus.COMPLETED),
        db=db,
        current_user=clinic_user,
    )

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment.id, db=db, current_user=clinic_user)
    assert exception_info.value.status_code == 409

    with pytest.raises(HTTPException) as exception_info:
        attach_file(
            appointment.id,
            AttachmentRequest(attachment_url='https://files.test/aso.pdf', attachment_name='aso.pdf'),
            db=db,
            current_user=clinic_user,
        )
    assert exception_info.value.status_code == 409


def test_get_missing_appointment_returns_404(db, clinic_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(404, db=db, current_user=clinic_user)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'


def test_bulk_archive_rejects_scheduled(db, clinic_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        archive_appointments(BulkStatusRequest(status=AppointmentStatus.SCHEDULED), db=db, current_user=clinic_user)

    assert exception_info.value.status_code == 400


@pytest.fixture
def client(session_factory, monkeypatch: pytest.MonkeyPatch):
    setup = session_factory()
    setup.add_all(
        [
            User(email='staff@clinic.test', role=ADMIN_ROLE),
            User(email='hr@acme.test', role=COMPANY_ROLE, company_id='acme'),
        ]
    )
    setup.commit()
    setup.close()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr('backend.auth.dependencies.SessionLocal', session_factory)
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(email: str, role: str, company_id: str | None = None) -> dict:
    token = jwt_handler.create_access_token(email, role=role, company_id=company_id)
    return {'Authorization': f'Bearer {token}'}


def test_booking_flow_over_http(client) -> None:
    clinic = _auth('staff@clinic.test', ADMIN_ROLE)
    company = _auth('hr@acme.test', COMPANY_ROLE, 'acme')
    payload = {
        'company_id': 'acme',
        'employee_id': 'emp-001',
        'exam_type_id': 'periodic',
        'scheduled_at': f'{FUTURE_DAY}T08:00:00',
    }

    first = client.post('/appointments', json=payload, headers=company)
    assert first.status_code == 201
    assert first.json()['time_slot'] == '08:00'
    assert first.json()['status'] == 'scheduled'

    assert client.post('/appointments', json={**payload, 'employee_id': 'emp-002'}, headers=company).status_code == 201

    full = client.post('/appointments', json={**payload, 'employee_id': 'emp-003'}, headers=company)
    assert full.status_code == 409
    assert full.json()['detail'] == {'code': 'slot_full', 'reason': 'Slot full (2/2)'}

    check = client.get('/availability/check', params={'date': FUTURE_DAY, 'time_slot': '08:00'}, headers=company)
    assert check.status_code == 200
    assert check.json()['available'] is False

    appointment_id = first.json()['id']
    forbidden = client.patch(f'/appointments/{appointment_id}/status', json={'status': 'completed'}, headers=company)
    assert forbidden.status_code == 403

    completed = client.patch(f'/appointments/{appointment_id}/status', json={'status': 'completed'}, headers=clinic)
    assert completed.status_code == 200
    assert completed.json()['previous_status'] == 'scheduled'
    assert completed.json()['appointment']['completed_at'] is not None

    listed = client.get('/appointments', params={'date': FUTURE_DAY}, headers=company)
    assert len(listed.json()) == 2


def test_clinic_only_endpoints_reject_companies(client) -> None:
    company = _auth('hr@acme.test', COMPANY_ROLE, 'acme')

    response = client.post('/availability/blocked-dates', json={'date': FUTURE_DAY, 'reason': 'Holiday'}, headers=company)

    assert response.status_code == 403
    assert response.json()['detail'] == 'Only clinic staff can perform this action.'


def test_requests_need_a_valid_token(client) -> None:
    assert client.get('/appointments').status_code in (401, 403)

    response = client.get('/appointments', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 401
    assert response.json()['detail'] == 'Invalid token'

    unknown = client.get('/appointments', headers=_auth('ghost@clinic.test', ADMIN_ROLE))
    assert unknown.status_code == 401
