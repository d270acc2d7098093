import asyncio
import json
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from backend import main
from backend.auth.dependencies import require_roles
from backend.auth.jwt_handler import create_access_token
from backend.core.deadline import Deadline
from backend.core.errors import Conflict, DeadlineExceeded, Forbidden, InvalidTransition, Unauthorized
from backend.models.appointment import AppointmentModality, AppointmentStatus
from backend.models.user import UserRole
from backend.routes import appointment_routes
from backend.routes.appointment_routes import (
    AppointmentResponse,
    CreateAppointmentRequest,
    TransitionRequest,
    cancel_appointment,
    create_appointment,
    ensure_database_ready,
    list_appointments,
    transition_appointment,
)

SCHEDULED_AT = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)


def book(services, patient, doctor):
    return create_appointment(
        CreateAppointmentRequest(doctor_id=doctor.participant_id, scheduled_at=SCHEDULED_AT),
        caller=patient,
        services=services,
    )


def test_create_appointment_request_normalizes_fields() -> None:
    request = CreateAppointmentRequest(
        doctor_id='  doctor-1 ',
        scheduled_at=SCHEDULED_AT,
        notes='   ',
    )

    assert request.doctor_id == 'doctor-1'
    assert request.notes is None
    assert request.modality == AppointmentModality.IN_PERSON


@pytest.mark.parametrize('payload', [
    {'doctor_id': '   ', 'scheduled_at': SCHEDULED_AT},
    {'doctor_id': 'doctor-1', 'scheduled_at': SCHEDULED_AT, 'notes': 'x' * 601},
    {'doctor_id': 'doctor-1', 'scheduled_at': SCHEDULED_AT, 'modality': 'TELEPATHY'},
])
def test_create_appointment_request_rejects_bad_input(payload) -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(**payload)


def test_transition_request_needs_both_reschedule_fields() -> None:
    with pytest.raises(ValidationError):
        TransitionRequest(status='PENDING', scheduled_at=SCHEDULED_AT)

    request = TransitionRequest(status='PENDING', scheduled_at=SCHEDULED_AT, modality='ONLINE')
    payload = request.reschedule_payload()
    assert payload.scheduled_at == SCHEDULED_AT
    assert payload.modality == AppointmentModality.ONLINE
    assert TransitionRequest(status='APPROVED').reschedule_payload() is None


def test_transition_request_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        TransitionRequest(status='ARCHIVED')


def test_create_and_list_appointments(services, patient, doctor) -> None:
    created = book(services, patient, doctor)

    response = AppointmentResponse.model_validate(created)
    assert response.status == AppointmentStatus.PENDING
    assert response.doctor_id == doctor.participant_id

    assert [a.id for a in list_appointments(caller=patient, services=services)] == [created.id]
    assert [a.id for a in list_appointments(caller=doctor, services=services)] == [created.id]


def test_transition_route_applies_doctor_decision(services, patient, doctor) -> None:
    created = book(services, patient, doctor)

    updated = transition_appointment(
        created.id,
        TransitionRequest(status='APPROVED'),
        caller=doctor,
        services=services,
        deadline=Deadline.after(5),
    )

    assert updated.status == AppointmentStatus.APPROVED


def test_transition_route_rejects_patient_approval(services, patient, doctor) -> None:
    created = book(services, patient, doctor)

    with pytest.raises(InvalidTransition):
        transition_appointment(
            created.id,
            TransitionRequest(status='APPROVED'),
            caller=patient,
            services=services,
            deadline=Deadline.after(5),
        )


def test_delete_route_cancels_without_removing(services, patient, doctor) -> None:
    created = book(services, patient, doctor)

    canceled = cancel_appointment(created.id, caller=patient, services=services, deadline=Deadline.after(5))

    assert canceled.status == AppointmentStatus.CANCELED
    assert [a.status for a in list_appointments(caller=patient, services=services)] == [AppointmentStatus.CANCELED]


def test_ensure_database_ready_maps_database_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_schema_check():
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(appointment_routes, 'ensure_appointment_schema', broken_schema_check)

    with pytest.raises(HTTPException) as exception_info:
        ensure_database_ready()

    assert exception_info.value.status_code == 503


def test_require_roles_authenticates_bearer_token(services, patient) -> None:
    dependency = require_roles(UserRole.PATIENT)
    credentials = HTTPAuthorizationCredentials(
        scheme='Bearer',
        credentials=create_access_token(patient.subject, UserRole.PATIENT),
    )

    caller = dependency(credentials=credentials, services=services, deadline=Deadline.after(5))

    assert caller.participant_id == patient.participant_id


def test_require_roles_rejects_missing_and_wrong_role(services, doctor) -> None:
    dependency = require_roles(UserRole.PATIENT)

    with pytest.raises(Unauthorized):
        dependency(credentials=None, services=services, deadline=Deadline.after(5))

    credentials = HTTPAuthorizationCredentials(
        scheme='Bearer',
        credentials=create_access_token(doctor.subject, UserRole.DOCTOR),
    )
    with pytest.raises(Forbidden):
        dependency(credentials=credentials, services=services, deadline=Deadline.after(5))


@pytest.mark.parametrize(('error', 'status_code', 'code'), [
    (Unauthorized('Token expired.', reason='expired_credentials'), 401, 'expired_credentials'),
    (Forbidden('Access denied.', reason='not_a_participant'), 403, 'not_a_participant'),
    (InvalidTransition("Cannot change appointment status from 'COMPLETED' to 'PENDING'."), 409, 'invalid_transition'),
    (Conflict('Appointment was changed by another request.'), 409, 'conflict'),
    (DeadlineExceeded('Deadline exceeded during appointment update.'), 504, 'deadline_exceeded'),
])
def test_core_errors_map_to_http_responses(error, status_code, code) -> None:
    response = asyncio.run(main.handle_core_error(None, error))

    assert response.status_code == status_code
    assert json.loads(response.body) == {'detail': error.detail, 'code': code}


def test_database_errors_map_to_service_unavailable() -> None:
    response = asyncio.run(main.handle_database_error(None, OperationalError('SELECT 1', {}, Exception('down'))))

    assert response.status_code == 503
