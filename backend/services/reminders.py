import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from backend.core.errors import CoreError
from backend.core.timeutils import as_utc, utcnow
from backend.models.appointment import AppointmentStatus
from backend.repositories.appointments import AppointmentRepository
from backend.services.appointment_lifecycle import AppointmentLifecycle
from backend.services.notifications import NotificationDispatcher, NotificationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderResult:
    appointment_id: str
    status: str
    error: str | None = None


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    """Start and end of the next calendar day (UTC) relative to ``now``."""
    tomorrow = as_utc(now).date() + timedelta(days=1)
    start = datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def send_due_reminders(
    appointments: AppointmentRepository,
    lifecycle: AppointmentLifecycle,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> list[ReminderResult]:
    range_start, range_end = reminder_window(now or utcnow())
    upcoming = appointments.list_scheduled_between(AppointmentStatus.APPROVED, range_start, range_end)
    logger.info('Found %d approved appointment(s) between %s and %s', len(upcoming), range_start, range_end)

    results: list[ReminderResult] = []
    for appointment in upcoming:
        try:
            dispatcher.dispatch(lifecycle.build_event(NotificationKind.REMINDER, appointment))
        except CoreError as exc:
            logger.warning('Reminder for appointment %s failed: %s', appointment.id, exc.detail)
            results.append(ReminderResult(appointment_id=appointment.id, status='failed', error=exc.detail))
            continue
        results.append(ReminderResult(appointment_id=appointment.id, status='sent'))

    return results
