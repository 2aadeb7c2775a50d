import os
from datetime import date, datetime

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-signing-key-0123456789abcdef0123456789')

from backend.database import Base, build_engine  # noqa: E402
from backend.models import appointment, availability, shift_capacity, slot_limit  # noqa: E402,F401
from backend.models.user import ADMIN_ROLE, COMPANY_ROLE, User  # noqa: E402
from backend.services import appointment_service  # noqa: E402
from backend.services.appointment_validation import AppointmentInput  # noqa: E402

# Naive datetimes are read as clinic local time.
NOW = datetime(2025, 6, 1, 9, 0)
BOOKING_DAY = date(2025, 6, 10)


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f'sqlite:///{tmp_path / "agenda.db"}')
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def booking_day() -> date:
    return BOOKING_DAY


@pytest.fixture
def clinic_user() -> User:
    return User(id=1, email='staff@clinic.test', role=ADMIN_ROLE)


@pytest.fixture
def company_user() -> User:
    return User(id=2, email='hr@acme.test', role=COMPANY_ROLE, company_id='acme')


@pytest.fixture
def other_company_user() -> User:
    return User(id=3, email='hr@globex.test', role=COMPANY_ROLE, company_id='globex')


@pytest.fixture
def make_input():
    def _make_input(hour: int = 8, minute: int = 0, day: date = BOOKING_DAY, **overrides) -> AppointmentInput:
        fields = {
            'company_id': 'acme',
            'employee_id': 'emp-001',
            'exam_type_id': 'periodic',
            'scheduled_at': datetime(day.year, day.month, day.day, hour, minute),
        }
        fields.update(overrides)
        return AppointmentInput(**fields)

    return _make_input


@pytest.fixture
def book(db, clinic_user, make_input):
    def _book(hour: int = 8, minute: int = 0, **overrides):
        return appointment_service.create_appointment(db, make_input(hour, minute, **overrides), clinic_user, now=NOW)

    return _book
