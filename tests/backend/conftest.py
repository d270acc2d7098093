import os
import uuid

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.auth.identity import AuthenticatedCaller  # noqa: E402
from backend.database import Base, build_engine, build_session_factory  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402,F401
from backend.models.conversation import Conversation, Message  # noqa: E402,F401
from backend.models.participant import Doctor, ParticipantKind, Patient  # noqa: E402
from backend.models.user import User, UserRole  # noqa: E402
from backend.services.email_transport import EmailTransportError  # noqa: E402
from backend.services.notifications import RetryPolicy  # noqa: E402
from backend.services.registry import build_services  # noqa: E402


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def shutdown(self, wait: bool = True) -> None:
        pass

    @property
    def kinds(self):
        return [event.kind for event in self.events]


class FakeTransport:
    """Fails the first ``failures`` deliveries (all of them when None), then succeeds."""

    def __init__(self, failures: int | None = 0):
        self.failures = failures
        self.calls = []

    def deliver(self, to, subject, html):
        self.calls.append((list(to), subject, html))
        if self.failures is None or len(self.calls) <= self.failures:
            raise EmailTransportError(f'SMTP down (attempt {len(self.calls)})')


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'medicloudhub.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield build_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _add_participant(session_factory, kind: ParticipantKind, full_name: str, email: str) -> AuthenticatedCaller:
    role = UserRole.PATIENT if kind == ParticipantKind.PATIENT else UserRole.DOCTOR
    with session_factory() as db:
        user = User(email=email, full_name=full_name, role=role, subject=f'sub-{uuid.uuid4()}')
        db.add(user)
        db.flush()
        profile = Patient(user_id=user.id) if kind == ParticipantKind.PATIENT else Doctor(user_id=user.id)
        db.add(profile)
        db.commit()
        return AuthenticatedCaller(
            user_id=user.id,
            subject=user.subject,
            role=role,
            participant_kind=kind,
            participant_id=profile.id,
            email=email,
            full_name=full_name,
        )


@pytest.fixture
def add_participant(session_factory):
    def factory(kind: ParticipantKind, full_name: str, email: str) -> AuthenticatedCaller:
        return _add_participant(session_factory, kind, full_name, email)

    return factory


@pytest.fixture
def patient(add_participant) -> AuthenticatedCaller:
    return add_participant(ParticipantKind.PATIENT, 'Ada Obi', 'ada@example.com')


@pytest.fixture
def doctor(add_participant) -> AuthenticatedCaller:
    return add_participant(ParticipantKind.DOCTOR, 'Grace Hopper', 'grace@clinic.example.com')


@pytest.fixture
def other_patient(add_participant) -> AuthenticatedCaller:
    return add_participant(ParticipantKind.PATIENT, 'Tunde Bello', 'tunde@example.com')


@pytest.fixture
def other_doctor(add_participant) -> AuthenticatedCaller:
    return add_participant(ParticipantKind.DOCTOR, 'Alan Turing', 'alan@clinic.example.com')


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def services(session_factory, transport, notifier):
    services = build_services(
        session_factory,
        transport,
        retry_policy=RetryPolicy(base_delay=0, sleep=lambda seconds: None),
        notifier=notifier,
    )
    try:
        yield services
    finally:
        services.shutdown()


@pytest.fixture
def make_transport():
    return FakeTransport
