"""Appointment notification emails.

Every lifecycle event becomes a ``NotificationEvent`` that the dispatcher
renders with a per-kind template and hands to the email transport. Delivery is
best effort: a message that still fails after the retry budget is reported
with ``NotificationDeliveryError`` and the appointment keeps its new status.
"""

import enum
import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from backend.core import config
from backend.core.errors import NotificationDeliveryError
from backend.models.appointment import AppointmentModality
from backend.repositories.appointments import AppointmentRecord
from backend.services.email_transport import EmailTransport, EmailTransportError

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = 'MediCloudHub - '
SIGNATURE = '<p>Best regards,</p>\n<p>MediCloudHub Team</p>\n'

MODALITY_LABELS = {
    AppointmentModality.IN_PERSON: 'In person',
    AppointmentModality.ONLINE: 'Online',
    AppointmentModality.VIDEO_CALL: 'Video call',
}


class NotificationKind(str, enum.Enum):
    BOOKING = 'BOOKING'
    CONFIRMATION = 'CONFIRMATION'
    REMINDER = 'REMINDER'
    CANCELLATION = 'CANCELLATION'
    RESCHEDULE = 'RESCHEDULE'
    REJECTION = 'REJECTION'
    COMPLETION = 'COMPLETION'


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    appointment: AppointmentRecord
    patient_name: str
    doctor_name: str
    patient_email: str
    doctor_email: str
    previous_scheduled_at: datetime | None = None


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


PATIENT_TEMPLATES = {
    NotificationKind.BOOKING: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Booking Confirmation',
        body="""
<h2>Appointment Booking Confirmation</h2>
<p>Dear {{patientName}},</p>
<p>Your appointment request with Dr. {{doctorName}} has been received:</p>
<ul>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
<p>You will be notified as soon as the doctor reviews it.</p>
""" + SIGNATURE,
    ),
    NotificationKind.CONFIRMATION: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Confirmed',
        body="""
<h2>Appointment Confirmed</h2>
<p>Dear {{patientName}},</p>
<p>Dr. {{doctorName}} has confirmed your appointment:</p>
<ul>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
""" + SIGNATURE,
    ),
    NotificationKind.REMINDER: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Reminder',
        body="""
<h2>Appointment Reminder</h2>
<p>Dear {{patientName}},</p>
<p>This is a reminder for your upcoming appointment:</p>
<ul>
  <li><strong>Doctor:</strong> {{doctorName}}</li>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
""" + SIGNATURE,
    ),
    NotificationKind.CANCELLATION: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Cancellation',
        body="""
<h2>Appointment Cancellation</h2>
<p>Dear {{patientName}},</p>
<p>Your appointment with Dr. {{doctorName}} has been cancelled:</p>
<ul>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
<p>We apologize for any inconvenience.</p>
""" + SIGNATURE,
    ),
    NotificationKind.RESCHEDULE: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Rescheduled',
        body="""
<h2>Appointment Rescheduled</h2>
<p>Dear {{patientName}},</p>
<p>Your appointment with Dr. {{doctorName}} has been rescheduled:</p>
<ul>
  <li><strong>Previous Date:</strong> {{oldAppointmentDate}}</li>
  <li><strong>Previous Time:</strong> {{oldAppointmentTime}}</li>
  <li><strong>New Date:</strong> {{appointmentDate}}</li>
  <li><strong>New Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
<p>The new time is awaiting confirmation.</p>
""" + SIGNATURE,
    ),
    NotificationKind.REJECTION: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Request Declined',
        body="""
<h2>Appointment Request Declined</h2>
<p>Dear {{patientName}},</p>
<p>Dr. {{doctorName}} is unable to take your appointment on {{appointmentDate}} at {{appointmentTime}}.</p>
<p>Please book another time that suits you.</p>
""" + SIGNATURE,
    ),
    NotificationKind.COMPLETION: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Consultation Completed',
        body="""
<h2>Consultation Completed</h2>
<p>Dear {{patientName}},</p>
<p>Your {{appointmentType}} consultation with Dr. {{doctorName}} on {{appointmentDate}} is complete.</p>
<p>You can now message Dr. {{doctorName}} from your dashboard.</p>
""" + SIGNATURE,
    ),
}

DOCTOR_TEMPLATES = {
    NotificationKind.BOOKING: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}New Appointment Booking',
        body="""
<h2>New Appointment Booked</h2>
<p>Dear Dr. {{doctorName}},</p>
<p>You have a new appointment request from patient {{patientName}}:</p>
<ul>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
<p>Please review and approve the appointment in your dashboard.</p>
""" + SIGNATURE,
    ),
    NotificationKind.CANCELLATION: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Cancelled',
        body="""
<h2>Appointment Cancelled</h2>
<p>Dear Dr. {{doctorName}},</p>
<p>The appointment with patient {{patientName}} has been cancelled:</p>
<ul>
  <li><strong>Date:</strong> {{appointmentDate}}</li>
  <li><strong>Time:</strong> {{appointmentTime}}</li>
</ul>
""" + SIGNATURE,
    ),
    NotificationKind.RESCHEDULE: EmailTemplate(
        subject=f'{SUBJECT_PREFIX}Appointment Rescheduled',
        body="""
<h2>Appointment Rescheduled</h2>
<p>Dear Dr. {{doctorName}},</p>
<p>The appointment with patient {{patientName}} has moved:</p>
<ul>
  <li><strong>Previous Date:</strong> {{oldAppointmentDate}}</li>
  <li><strong>Previous Time:</strong> {{oldAppointmentTime}}</li>
  <li><strong>New Date:</strong> {{appointmentDate}}</li>
  <li><strong>New Time:</strong> {{appointmentTime}}</li>
  <li><strong>Type:</strong> {{appointmentType}}</li>
</ul>
""" + SIGNATURE,
    ),
}

DOCTOR_COPY_KINDS = frozenset(DOCTOR_TEMPLATES)


def render_template(template: str, variables: Mapping[str, object]) -> str:
    """Replace ``{{name}}`` tokens literally; unknown tokens stay as they are."""
    rendered = template
    for name, value in variables.items():
        rendered = rendered.replace('{{' + name + '}}', str(value))
    return rendered


def format_date(value: datetime) -> str:
    return value.strftime('%Y-%m-%d')


def format_time(value: datetime) -> str:
    return value.strftime('%H:%M UTC')


def build_variables(event: NotificationEvent) -> dict[str, str]:
    appointment = event.appointment
    variables = {
        'patientName': event.patient_name,
        'doctorName': event.doctor_name,
        'appointmentDate': format_date(appointment.scheduled_at),
        'appointmentTime': format_time(appointment.scheduled_at),
        'appointmentType': MODALITY_LABELS[appointment.modality],
    }
    if event.kind == NotificationKind.RESCHEDULE and event.previous_scheduled_at is not None:
        variables['oldAppointmentDate'] = format_date(event.previous_scheduled_at)
        variables['oldAppointmentTime'] = format_time(event.previous_scheduled_at)
    return variables


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with linear backoff: wait ``attempt * base_delay`` after a failure."""

    max_attempts: int = 3
    base_delay: float = 1.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_config(cls) -> 'RetryPolicy':
        return cls(
            max_attempts=config.NOTIFICATION_MAX_ATTEMPTS,
            base_delay=config.NOTIFICATION_RETRY_BASE_DELAY_SECONDS,
        )

    def delay_after(self, attempt: int) -> float:
        return attempt * self.base_delay


@dataclass
class DeliveryResult:
    recipient: str
    subject: str
    attempts: int
    error: Exception | None = None

    @property
    def delivered(self) -> bool:
        return self.error is None


@dataclass
class DeliveryReport:
    kind: NotificationKind
    appointment_id: str
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return all(result.delivered for result in self.results)

    @property
    def attempts(self) -> int:
        return sum(result.attempts for result in self.results)


class NotificationDispatcher:
    def __init__(self, transport: EmailTransport, retry_policy: RetryPolicy | None = None) -> None:
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy()

    def messages_for(self, event: NotificationEvent) -> list[tuple[str, str, str]]:
        """Rendered ``(recipient, subject, html)`` triples for an event."""
        variables = build_variables(event)
        template = PATIENT_TEMPLATES[event.kind]
        messages = [
            (event.patient_email, template.subject, render_template(template.body, variables)),
        ]
        if event.kind in DOCTOR_COPY_KINDS:
            doctor_template = DOCTOR_TEMPLATES[event.kind]
            messages.append(
                (event.doctor_email, doctor_template.subject, render_template(doctor_template.body, variables))
            )
        return messages

    def dispatch(self, event: NotificationEvent) -> DeliveryReport:
        report = DeliveryReport(kind=event.kind, appointment_id=event.appointment.id)

        for recipient, subject, html in self.messages_for(event):
            report.results.append(self._deliver(recipient, subject, html))

        failures = [result for result in report.results if not result.delivered]
        if failures:
            raise NotificationDeliveryError(
                f'{event.kind.value} notification for appointment {event.appointment.id} '
                f'could not be delivered to {len(failures)} recipient(s).',
                last_error=failures[-1].error,
                recipients=[result.recipient for result in failures],
            )

        logger.info(
            '%s notification for appointment %s delivered to %d recipient(s)',
            event.kind.value,
            event.appointment.id,
            len(report.results),
        )
        return report

    def _deliver(self, recipient: str, subject: str, html: str) -> DeliveryResult:
        policy = self._retry_policy
        last_error: Exception | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                self._transport.deliver([recipient], subject, html)
                return DeliveryResult(recipient=recipient, subject=subject, attempts=attempt)
            except EmailTransportError as exc:
                last_error = exc
                logger.error('Attempt %d to email %s failed: %s', attempt, recipient, exc)
            except Exception as exc:
                last_error = exc
                logger.exception('Attempt %d to email %s crashed in the transport', attempt, recipient)

            if attempt < policy.max_attempts:
                policy.sleep(policy.delay_after(attempt))

        return DeliveryResult(
            recipient=recipient,
            subject=subject,
            attempts=policy.max_attempts,
            error=last_error,
        )


class BackgroundNotifier:
    """Runs dispatches off the request path; failures end up in the log only."""

    def __init__(self, dispatcher: NotificationDispatcher, executor: Executor | None = None) -> None:
        self._dispatcher = dispatcher
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.NOTIFICATION_WORKERS,
            thread_name_prefix='notifications',
        )

    def __call__(self, event: NotificationEvent) -> Future:
        future = self._executor.submit(self._dispatcher.dispatch, event)
        future.add_done_callback(_log_outcome)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_outcome(future: Future) -> None:
    exc = future.exception()
    if exc is None:
        return
    if isinstance(exc, NotificationDeliveryError):
        logger.warning('Notification abandoned: %s (last error: %s)', exc.detail, exc.last_error)
    else:
        logger.error('Notification dispatch crashed', exc_info=exc)
