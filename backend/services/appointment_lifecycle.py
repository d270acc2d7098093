"""Appointment lifecycle state machine.

    PENDING --doctor--> APPROVED --doctor--> COMPLETED
    PENDING --doctor--> REJECTED
    PENDING/APPROVED --patient--> CANCELED
    APPROVED --doctor, reschedule--> PENDING

REJECTED, COMPLETED and CANCELED are terminal. Every status write is
conditional on the status read at the start of the call, so of two concurrent
transitions on one appointment exactly one wins and the other gets
``Conflict``. Notifications are handed off after the write commits and can
never undo it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from backend.auth.identity import AuthenticatedCaller
from backend.core.deadline import Deadline
from backend.core.errors import Conflict, Forbidden, InvalidArgument, InvalidTransition, NotFound
from backend.core.timeutils import as_utc, utcnow
from backend.models.appointment import AppointmentModality, AppointmentStatus
from backend.models.participant import ParticipantKind
from backend.repositories.appointments import AppointmentRecord, AppointmentRepository
from backend.repositories.participants import ParticipantDirectory
from backend.services.conversation_gate import ConversationGate
from backend.services.notifications import NotificationEvent, NotificationKind

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600

TRANSITIONS: dict[tuple[AppointmentStatus, ParticipantKind], frozenset[AppointmentStatus]] = {
    (AppointmentStatus.PENDING, ParticipantKind.DOCTOR): frozenset({
        AppointmentStatus.APPROVED,
        AppointmentStatus.REJECTED,
    }),
    (AppointmentStatus.PENDING, ParticipantKind.PATIENT): frozenset({
        AppointmentStatus.CANCELED,
    }),
    (AppointmentStatus.APPROVED, ParticipantKind.DOCTOR): frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.PENDING,
    }),
    (AppointmentStatus.APPROVED, ParticipantKind.PATIENT): frozenset({
        AppointmentStatus.CANCELED,
    }),
}

NOTIFICATION_KINDS = {
    AppointmentStatus.APPROVED: NotificationKind.CONFIRMATION,
    AppointmentStatus.REJECTED: NotificationKind.REJECTION,
    AppointmentStatus.COMPLETED: NotificationKind.COMPLETION,
    AppointmentStatus.CANCELED: NotificationKind.CANCELLATION,
    AppointmentStatus.PENDING: NotificationKind.RESCHEDULE,
}


@dataclass(frozen=True)
class ReschedulePayload:
    scheduled_at: datetime
    modality: AppointmentModality


def allowed_targets(current: AppointmentStatus, actor: ParticipantKind) -> frozenset[AppointmentStatus]:
    return TRANSITIONS.get((current, actor), frozenset())


def is_reschedule(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return current == AppointmentStatus.APPROVED and target == AppointmentStatus.PENDING


def is_participant(caller: AuthenticatedCaller, appointment: AppointmentRecord) -> bool:
    if caller.participant_kind == ParticipantKind.PATIENT:
        return appointment.patient_id == caller.participant_id
    return appointment.doctor_id == caller.participant_id


def normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise InvalidArgument(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
    return normalized


class AppointmentLifecycle:
    def __init__(
        self,
        appointments: AppointmentRepository,
        participants: ParticipantDirectory,
        notify: Callable[[NotificationEvent], object],
        conversation_gate: ConversationGate,
    ) -> None:
        self._appointments = appointments
        self._participants = participants
        self._notify = notify
        self._conversation_gate = conversation_gate

    def create_appointment(
        self,
        caller: AuthenticatedCaller,
        doctor_id: str,
        scheduled_at: datetime,
        modality: AppointmentModality = AppointmentModality.IN_PERSON,
        notes: str | None = None,
    ) -> AppointmentRecord:
        if not caller.is_patient:
            raise Forbidden('Only patients can book appointments.', reason='patients_only')

        if self._participants.get(ParticipantKind.DOCTOR, doctor_id) is None:
            raise NotFound('Doctor not found.')

        appointment = self._appointments.create(
            patient_id=caller.participant_id,
            doctor_id=doctor_id,
            scheduled_at=as_utc(scheduled_at),
            modality=AppointmentModality(modality),
            notes=normalize_notes(notes),
        )
        logger.info('Patient %s booked appointment %s with doctor %s', caller.participant_id, appointment.id, doctor_id)

        self._emit(NotificationKind.BOOKING, appointment)
        return appointment

    def apply_transition(
        self,
        appointment_id: str,
        caller: AuthenticatedCaller,
        target_status: AppointmentStatus,
        payload: ReschedulePayload | None = None,
        deadline: Deadline | None = None,
    ) -> AppointmentRecord:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise NotFound('Appointment not found.')

        if not is_participant(caller, appointment):
            raise Forbidden('Access denied: you are not part of this appointment.', reason='not_a_participant')

        current = appointment.status
        try:
            target = AppointmentStatus(target_status)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown appointment status '{target_status}'.") from exc
        if target not in allowed_targets(current, caller.participant_kind):
            raise InvalidTransition(
                f"Cannot change appointment status from '{current.value}' to '{target.value}'."
            )

        values: dict = {'status': target}
        if is_reschedule(current, target):
            if payload is None:
                raise InvalidArgument('Rescheduling requires a new date and appointment type.')
            values['scheduled_at'] = as_utc(payload.scheduled_at)
            values['modality'] = AppointmentModality(payload.modality)
        elif payload is not None:
            raise InvalidArgument('Only a reschedule accepts a new date and appointment type.')

        if target == AppointmentStatus.COMPLETED:
            values['completed_at'] = utcnow()

        updated = self._appointments.conditional_update(appointment.id, current, values, deadline=deadline)
        if updated is None:
            raise Conflict('Appointment was changed by another request. Reload it and try again.')

        logger.info(
            'Appointment %s moved %s -> %s by %s %s',
            updated.id,
            current.value,
            target.value,
            caller.participant_kind.value.lower(),
            caller.participant_id,
        )

        previous_scheduled_at = appointment.scheduled_at if is_reschedule(current, target) else None
        self._emit(NOTIFICATION_KINDS[target], updated, previous_scheduled_at=previous_scheduled_at)

        if target == AppointmentStatus.COMPLETED:
            self._unlock_conversation(updated)

        return updated

    def cancel_appointment(
        self,
        caller: AuthenticatedCaller,
        appointment_id: str,
        deadline: Deadline | None = None,
    ) -> AppointmentRecord:
        return self.apply_transition(appointment_id, caller, AppointmentStatus.CANCELED, deadline=deadline)

    def list_appointments(self, caller: AuthenticatedCaller) -> list[AppointmentRecord]:
        if caller.is_patient:
            return self._appointments.list_for_patient(caller.participant_id)
        return self._appointments.list_for_doctor(caller.participant_id)

    def build_event(
        self,
        kind: NotificationKind,
        appointment: AppointmentRecord,
        previous_scheduled_at: datetime | None = None,
    ) -> NotificationEvent:
        patient = self._participants.get(ParticipantKind.PATIENT, appointment.patient_id)
        doctor = self._participants.get(ParticipantKind.DOCTOR, appointment.doctor_id)
        if patient is None or doctor is None:
            raise NotFound(f'Participants of appointment {appointment.id} not found.')
        return NotificationEvent(
            kind=kind,
            appointment=appointment,
            patient_name=patient.full_name,
            doctor_name=doctor.full_name,
            patient_email=patient.email,
            doctor_email=doctor.email,
            previous_scheduled_at=previous_scheduled_at,
        )

    def _emit(
        self,
        kind: NotificationKind,
        appointment: AppointmentRecord,
        previous_scheduled_at: datetime | None = None,
    ) -> None:
        # The status change is already committed; nothing here may fail the call.
        try:
            self._notify(self.build_event(kind, appointment, previous_scheduled_at))
        except Exception:
            logger.exception('Could not queue %s notification for appointment %s', kind.value, appointment.id)

    def _unlock_conversation(self, appointment: AppointmentRecord) -> None:
        try:
            self._conversation_gate.ensure_conversation(appointment.patient_id, appointment.doctor_id)
        except SQLAlchemyError:
            logger.exception(
                'Could not open conversation after appointment %s completed; it can be started manually',
                appointment.id,
            )
