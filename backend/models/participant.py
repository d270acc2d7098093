"""Patient and doctor profile definitions."""

import enum
import uuid

from sqlalchemy import Column, ForeignKey, String

from backend.database import Base
from backend.models.user import UserRole


class ParticipantKind(str, enum.Enum):
    PATIENT = 'PATIENT'
    DOCTOR = 'DOCTOR'

    @classmethod
    def for_role(cls, role: UserRole) -> 'ParticipantKind | None':
        if role == UserRole.PATIENT:
            return cls.PATIENT
        if role == UserRole.DOCTOR:
            return cls.DOCTOR
        return None

    @property
    def counterpart(self) -> 'ParticipantKind':
        return ParticipantKind.DOCTOR if self == ParticipantKind.PATIENT else ParticipantKind.PATIENT


class Patient(Base):
    """A patient profile owned by exactly one user."""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)


class Doctor(Base):
    """A doctor profile owned by exactly one user."""
    __tablename__ = "doctors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    specialization = Column(String, nullable=True)


PARTICIPANT_MODELS = {
    ParticipantKind.PATIENT: Patient,
    ParticipantKind.DOCTOR: Doctor,
}
