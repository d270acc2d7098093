from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from backend.models.participant import PARTICIPANT_MODELS, ParticipantKind
from backend.models.user import User, UserRole


@dataclass(frozen=True)
class ParticipantRecord:
    kind: ParticipantKind
    id: str
    user_id: str
    subject: str
    role: UserRole
    email: str
    full_name: str


class ParticipantDirectory:
    """Looks up patient and doctor profiles through one kind-tagged operation."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def resolve(self, kind: ParticipantKind, subject: str) -> ParticipantRecord | None:
        """Find the profile of ``kind`` owned by the user with this credential subject."""
        model = PARTICIPANT_MODELS[kind]
        with self._session_factory() as db:
            row = (
                db.query(model, User)
                .join(User, model.user_id == User.id)
                .filter(User.subject == subject)
                .first()
            )
        if row is None:
            return None
        return _to_record(kind, *row)

    def get(self, kind: ParticipantKind, participant_id: str) -> ParticipantRecord | None:
        model = PARTICIPANT_MODELS[kind]
        with self._session_factory() as db:
            row = (
                db.query(model, User)
                .join(User, model.user_id == User.id)
                .filter(model.id == participant_id)
                .first()
            )
        if row is None:
            return None
        return _to_record(kind, *row)


def _to_record(kind: ParticipantKind, participant, user: User) -> ParticipantRecord:
    return ParticipantRecord(
        kind=kind,
        id=participant.id,
        user_id=user.id,
        subject=user.subject,
        role=user.role,
        email=user.email,
        full_name=user.full_name or '',
    )
