import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from backend.core.deadline import Deadline
from backend.core.errors import DeadlineExceeded
from backend.core.timeutils import as_utc, utcnow
from backend.models.appointment import Appointment, AppointmentModality, AppointmentStatus

logger = logging.getLogger(__name__)

POSTGRES_QUERY_CANCELED = '57014'


@dataclass(frozen=True)
class AppointmentRecord:
    """Immutable copy of an appointment row, safe to hand across threads."""

    id: str
    patient_id: str
    doctor_id: str
    scheduled_at: datetime
    modality: AppointmentModality
    status: AppointmentStatus
    notes: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, appointment: Appointment) -> 'AppointmentRecord':
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            scheduled_at=as_utc(appointment.scheduled_at),
            modality=AppointmentModality(appointment.modality),
            status=AppointmentStatus(appointment.status),
            notes=appointment.notes,
            created_at=as_utc(appointment.created_at),
            updated_at=as_utc(appointment.updated_at),
            completed_at=as_utc(appointment.completed_at),
        )


class AppointmentRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create(
        self,
        *,
        patient_id: str,
        doctor_id: str,
        scheduled_at: datetime,
        modality: AppointmentModality,
        notes: str | None = None,
    ) -> AppointmentRecord:
        now = utcnow()
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            scheduled_at=scheduled_at,
            modality=modality,
            status=AppointmentStatus.PENDING,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(appointment)
            db.commit()
            return AppointmentRecord.from_model(appointment)

    def get(self, appointment_id: str) -> AppointmentRecord | None:
        with self._session_factory() as db:
            appointment = db.get(Appointment, appointment_id)
            if appointment is None:
                return None
            return AppointmentRecord.from_model(appointment)

    def list_for_patient(self, patient_id: str) -> list[AppointmentRecord]:
        with self._session_factory() as db:
            appointments = db.query(Appointment).filter(
                Appointment.patient_id == patient_id,
            ).order_by(Appointment.scheduled_at.asc()).all()
            return [AppointmentRecord.from_model(appointment) for appointment in appointments]

    def list_for_doctor(self, doctor_id: str) -> list[AppointmentRecord]:
        with self._session_factory() as db:
            appointments = db.query(Appointment).filter(
                Appointment.doctor_id == doctor_id,
            ).order_by(Appointment.scheduled_at.asc()).all()
            return [AppointmentRecord.from_model(appointment) for appointment in appointments]

    def list_scheduled_between(
        self,
        status: AppointmentStatus,
        range_start: datetime,
        range_end: datetime,
    ) -> list[AppointmentRecord]:
        with self._session_factory() as db:
            appointments = db.query(Appointment).filter(
                Appointment.status == status,
                Appointment.scheduled_at >= range_start,
                Appointment.scheduled_at < range_end,
            ).order_by(Appointment.scheduled_at.asc()).all()
            return [AppointmentRecord.from_model(appointment) for appointment in appointments]

    def latest_completion(self, patient_id: str, doctor_id: str) -> datetime | None:
        """Completion time of the pair's most recent COMPLETED appointment, if any."""
        with self._session_factory() as db:
            appointment = db.query(Appointment).filter(
                Appointment.patient_id == patient_id,
                Appointment.doctor_id == doctor_id,
                Appointment.status == AppointmentStatus.COMPLETED,
            ).order_by(
                Appointment.completed_at.desc(),
                Appointment.updated_at.desc(),
            ).first()
            if appointment is None:
                return None
            return as_utc(appointment.completed_at or appointment.updated_at)

    def has_completed(self, patient_id: str, doctor_id: str) -> bool:
        with self._session_factory() as db:
            return db.query(Appointment.id).filter(
                Appointment.patient_id == patient_id,
                Appointment.doctor_id == doctor_id,
                Appointment.status == AppointmentStatus.COMPLETED,
            ).first() is not None

    def conditional_update(
        self,
        appointment_id: str,
        expected_status: AppointmentStatus,
        values: dict,
        deadline: Deadline | None = None,
    ) -> AppointmentRecord | None:
        """Apply ``values`` only while the row still has ``expected_status``.

        Returns the updated record, or None when zero rows matched (the caller
        lost a race). Never retried here.
        """
        with self._session_factory() as db:
            try:
                if deadline is not None:
                    deadline.check('appointment update')
                    _apply_statement_timeout(db, deadline)

                result = db.execute(
                    update(Appointment)
                    .where(
                        Appointment.id == appointment_id,
                        Appointment.status == expected_status,
                    )
                    .values(**values, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    db.rollback()
                    return None

                appointment = db.get(Appointment, appointment_id, populate_existing=True)
                record = AppointmentRecord.from_model(appointment)
                db.commit()
                return record
            except OperationalError as exc:
                db.rollback()
                if deadline is not None and (deadline.expired() or _is_statement_timeout(exc)):
                    logger.warning('Conditional update of appointment %s timed out; state unknown', appointment_id)
                    raise DeadlineExceeded('Deadline exceeded during appointment update.') from exc
                raise


def _apply_statement_timeout(db: Session, deadline: Deadline) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return
    timeout_ms = max(1, int(deadline.remaining() * 1000))
    db.execute(text(f'SET LOCAL statement_timeout = {timeout_ms}'))


def _is_statement_timeout(exc: OperationalError) -> bool:
    return getattr(exc.orig, 'pgcode', None) == POSTGRES_QUERY_CANCELED
