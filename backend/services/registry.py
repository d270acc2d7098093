from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from backend.auth.identity import IdentityGuard
from backend.repositories.appointments import AppointmentRepository
from backend.repositories.conversations import ConversationRepository
from backend.repositories.participants import ParticipantDirectory
from backend.services.appointment_lifecycle import AppointmentLifecycle
from backend.services.conversation_gate import ConversationGate, MessagePublisher
from backend.services.email_transport import EmailTransport
from backend.services.notifications import BackgroundNotifier, NotificationDispatcher, RetryPolicy


@dataclass
class Services:
    """Process-wide wiring of repositories and services, built once at startup."""

    appointments: AppointmentRepository
    conversations: ConversationRepository
    participants: ParticipantDirectory
    identity_guard: IdentityGuard
    dispatcher: NotificationDispatcher
    notifier: BackgroundNotifier
    conversation_gate: ConversationGate
    lifecycle: AppointmentLifecycle

    def shutdown(self) -> None:
        self.notifier.shutdown(wait=True)


def build_services(
    session_factory: sessionmaker,
    transport: EmailTransport,
    retry_policy: RetryPolicy | None = None,
    publisher: MessagePublisher | None = None,
    notifier: BackgroundNotifier | None = None,
) -> Services:
    appointments = AppointmentRepository(session_factory)
    conversations = ConversationRepository(session_factory)
    participants = ParticipantDirectory(session_factory)

    dispatcher = NotificationDispatcher(transport, retry_policy or RetryPolicy.from_config())
    notifier = notifier or BackgroundNotifier(dispatcher)
    conversation_gate = ConversationGate(conversations, appointments, participants, publisher=publisher)
    lifecycle = AppointmentLifecycle(appointments, participants, notifier, conversation_gate)

    return Services(
        appointments=appointments,
        conversations=conversations,
        participants=participants,
        identity_guard=IdentityGuard(participants),
        dispatcher=dispatcher,
        notifier=notifier,
        conversation_gate=conversation_gate,
        lifecycle=lifecycle,
    )
