from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import get_deadline, get_services, require_roles
from backend.auth.identity import AuthenticatedCaller
from backend.core.deadline import Deadline
from backend.database import ensure_appointment_schema, ensure_conversation_schema
from backend.models.appointment import AppointmentModality, AppointmentStatus
from backend.models.user import UserRole
from backend.repositories.appointments import AppointmentRecord
from backend.services.appointment_lifecycle import MAX_APPOINTMENT_NOTES_LENGTH, ReschedulePayload
from backend.services.registry import Services

router = APIRouter(tags=['appointments'])

patient_only = require_roles(UserRole.PATIENT)
any_participant = require_roles(UserRole.PATIENT, UserRole.DOCTOR)


class CreateAppointmentRequest(BaseModel):
    doctor_id: str
    scheduled_at: datetime
    modality: AppointmentModality = AppointmentModality.IN_PERSON
    notes: str | None = None

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Doctor is required.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class TransitionRequest(BaseModel):
    status: AppointmentStatus
    scheduled_at: datetime | None = None
    modality: AppointmentModality | None = None

    @model_validator(mode='after')
    def validate_reschedule_fields(self) -> 'TransitionRequest':
        if (self.scheduled_at is None) != (self.modality is None):
            raise ValueError('A reschedule needs both scheduled_at and modality.')
        return self

    def reschedule_payload(self) -> ReschedulePayload | None:
        if self.scheduled_at is None or self.modality is None:
            return None
        return ReschedulePayload(scheduled_at=self.scheduled_at, modality=self.modality)


class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    scheduled_at: datetime
    modality: AppointmentModality
    status: AppointmentStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_conversation_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    caller: AuthenticatedCaller = Depends(patient_only),
    services: Services = Depends(get_services),
) -> AppointmentRecord:
    ensure_database_ready()

    return services.lifecycle.create_appointment(
        caller,
        doctor_id=data.doctor_id,
        scheduled_at=data.scheduled_at,
        modality=data.modality,
        notes=data.notes,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> list[AppointmentRecord]:
    ensure_database_ready()

    return services.lifecycle.list_appointments(caller)


@router.post('/{appointment_id}/transitions', response_model=AppointmentResponse)
def transition_appointment(
    appointment_id: str,
    data: TransitionRequest,
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
    deadline: Deadline = Depends(get_deadline),
) -> AppointmentRecord:
    ensure_database_ready()

    return services.lifecycle.apply_transition(
        appointment_id,
        caller,
        data.status,
        payload=data.reschedule_payload(),
        deadline=deadline,
    )


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    caller: AuthenticatedCaller = Depends(patient_only),
    services: Services = Depends(get_services),
    deadline: Deadline = Depends(get_deadline),
) -> AppointmentRecord:
    ensure_database_ready()

    return services.lifecycle.cancel_appointment(caller, appointment_id, deadline=deadline)
