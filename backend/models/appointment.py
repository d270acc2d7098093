"""Appointment model definitions."""

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String

from backend.core.timeutils import utcnow
from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    COMPLETED = 'COMPLETED'
    CANCELED = 'CANCELED'


class AppointmentModality(str, enum.Enum):
    IN_PERSON = 'IN_PERSON'
    ONLINE = 'ONLINE'
    VIDEO_CALL = 'VIDEO_CALL'


class Appointment(Base):
    """Represents a scheduled consultation between one patient and one doctor."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    modality = Column(
        Enum(AppointmentModality, native_enum=False, length=20),
        nullable=False,
        default=AppointmentModality.IN_PERSON,
    )
    status = Column(
        Enum(AppointmentStatus, native_enum=False, length=20),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    notes = Column(String(600), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
