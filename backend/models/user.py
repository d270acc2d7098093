"""User model definitions."""

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, String

from backend.core.timeutils import utcnow
from backend.database import Base


class UserRole(str, enum.Enum):
    PATIENT = 'PATIENT'
    DOCTOR = 'DOCTOR'
    ADMIN = 'ADMIN'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False, default='')
    role = Column(Enum(UserRole, native_enum=False, length=20), nullable=False)
    # Stable subject id carried in the JWT "sub" claim.
    subject = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
