"""Identity guard: turns a bearer credential into an authenticated caller.

The guard never writes anything. A credential that verifies but whose subject
has no local patient/doctor profile is reported separately from a bad
signature so the two can be told apart in the logs.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import jwt

from backend.auth import jwt_handler
from backend.core.deadline import Deadline
from backend.core.errors import Forbidden, Unauthorized
from backend.models.participant import ParticipantKind
from backend.models.user import UserRole
from backend.repositories.participants import ParticipantDirectory, ParticipantRecord

logger = logging.getLogger(__name__)

PARTICIPANT_ROLES = frozenset({UserRole.PATIENT, UserRole.DOCTOR})


@dataclass(frozen=True)
class AuthenticatedCaller:
    user_id: str
    subject: str
    role: UserRole
    participant_kind: ParticipantKind
    participant_id: str
    email: str
    full_name: str

    @classmethod
    def from_participant(cls, participant: ParticipantRecord) -> 'AuthenticatedCaller':
        return cls(
            user_id=participant.user_id,
            subject=participant.subject,
            role=participant.role,
            participant_kind=participant.kind,
            participant_id=participant.id,
            email=participant.email,
            full_name=participant.full_name,
        )

    @property
    def is_patient(self) -> bool:
        return self.participant_kind == ParticipantKind.PATIENT

    @property
    def is_doctor(self) -> bool:
        return self.participant_kind == ParticipantKind.DOCTOR


def _normalize_roles(required_roles: UserRole | Iterable[UserRole]) -> frozenset[UserRole]:
    if isinstance(required_roles, UserRole):
        return frozenset({required_roles})
    return frozenset(UserRole(role) for role in required_roles)


class IdentityGuard:
    def __init__(self, participants: ParticipantDirectory) -> None:
        self._participants = participants

    def authenticate(
        self,
        bearer_token: str | None,
        required_roles: UserRole | Iterable[UserRole] = PARTICIPANT_ROLES,
        deadline: Deadline | None = None,
    ) -> AuthenticatedCaller:
        if deadline is not None:
            deadline.check('credential check')

        if not bearer_token or not bearer_token.strip():
            raise Unauthorized('Missing bearer token.', reason='missing_credentials')

        try:
            payload = jwt_handler.decode_access_token(bearer_token.strip())
        except jwt.ExpiredSignatureError as exc:
            raise Unauthorized('Token expired.', reason='expired_credentials') from exc
        except jwt.InvalidTokenError as exc:
            raise Unauthorized('Invalid token.', reason='invalid_credentials') from exc

        subject = payload.get('sub')
        if not isinstance(subject, str) or not subject:
            raise Unauthorized('Invalid token subject.', reason='invalid_credentials')

        try:
            role = UserRole(payload.get('role'))
        except ValueError as exc:
            raise Forbidden('Access denied.', reason='unknown_role') from exc

        if role not in _normalize_roles(required_roles):
            raise Forbidden('Access denied.', reason='role_not_permitted')

        kind = ParticipantKind.for_role(role)
        if kind is None:
            raise Forbidden('Only patients and doctors can act on appointments.', reason='not_a_participant')

        participant = self._participants.resolve(kind, subject)
        if participant is None:
            logger.warning('Valid credential for subject %s has no %s profile', subject, kind.value.lower())
            raise Unauthorized('Account not found.', reason='unresolvable_account')

        if deadline is not None:
            deadline.check('credential check')

        return AuthenticatedCaller.from_participant(participant)
