"""User model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base

ADMIN_ROLE = "admin"
COMPANY_ROLE = "company"


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String)  # admin (clinic staff) / company
    company_id = Column(String(64))

    @property
    def is_clinic_staff(self) -> bool:
        return self.role == ADMIN_ROLE
