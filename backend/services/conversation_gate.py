"""Conversation gate.

A patient and a doctor share at most one conversation. It is unlocked by
their first completed appointment and stays open afterwards regardless of
what happens to later appointments between them.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from backend.auth.identity import AuthenticatedCaller
from backend.core import config
from backend.core.errors import Forbidden, InvalidArgument, NotFound
from backend.core.timeutils import as_utc, utcnow
from backend.models.participant import ParticipantKind
from backend.repositories.appointments import AppointmentRepository
from backend.repositories.conversations import ConversationRecord, ConversationRepository, MessageRecord
from backend.repositories.participants import ParticipantDirectory

logger = logging.getLogger(__name__)


class MessagePublisher(Protocol):
    def publish(self, channel: str, payload: dict) -> None:
        ...


class LoggingPublisher:
    """Default publisher for deployments without a real-time push service."""

    def publish(self, channel: str, payload: dict) -> None:
        logger.debug('Publishing %s to %s', payload.get('type'), channel)


@dataclass(frozen=True)
class ChatWindow:
    active: bool
    reason: str
    remaining_days: int | None = None
    completed_at: datetime | None = None
    window_ends_at: datetime | None = None


def chat_window_status(completed_at: datetime | None, now: datetime, window: timedelta) -> ChatWindow:
    if completed_at is None:
        return ChatWindow(
            active=False,
            reason='No completed appointments found. Please book an appointment first.',
        )

    window_ends_at = completed_at + window
    if now > window_ends_at:
        return ChatWindow(
            active=False,
            reason='Chat window has expired. Please book a new appointment to continue chatting.',
            completed_at=completed_at,
            window_ends_at=window_ends_at,
        )

    remaining_days = math.ceil((window_ends_at - now) / timedelta(days=1))
    return ChatWindow(
        active=True,
        reason=f'Chat is active. You can chat for {remaining_days} more day(s).',
        remaining_days=remaining_days,
        completed_at=completed_at,
        window_ends_at=window_ends_at,
    )


def conversation_channel(conversation_id: str) -> str:
    return f'conversation:{conversation_id}'


class ConversationGate:
    def __init__(
        self,
        conversations: ConversationRepository,
        appointments: AppointmentRepository,
        participants: ParticipantDirectory,
        publisher: MessagePublisher | None = None,
        chat_window: timedelta | None = None,
    ) -> None:
        self._conversations = conversations
        self._appointments = appointments
        self._participants = participants
        self._publisher = publisher or LoggingPublisher()
        self._chat_window = chat_window or timedelta(days=config.CHAT_WINDOW_DAYS)

    def ensure_conversation(self, patient_id: str, doctor_id: str) -> ConversationRecord:
        conversation, created = self._conversations.insert_or_fetch(patient_id, doctor_id)
        if created:
            logger.info('Opened conversation %s for patient %s and doctor %s', conversation.id, patient_id, doctor_id)
        return conversation

    def start_conversation(self, caller: AuthenticatedCaller, counterpart_id: str) -> ConversationRecord:
        counterpart_kind = caller.participant_kind.counterpart
        if self._participants.get(counterpart_kind, counterpart_id) is None:
            raise NotFound(f'{counterpart_kind.value.title()} not found.')

        if caller.is_patient:
            patient_id, doctor_id = caller.participant_id, counterpart_id
        else:
            patient_id, doctor_id = counterpart_id, caller.participant_id

        if not self._appointments.has_completed(patient_id, doctor_id):
            raise Forbidden('Conversations open after a completed appointment.', reason='conversation_locked')

        return self.ensure_conversation(patient_id, doctor_id)

    def list_conversations(self, caller: AuthenticatedCaller) -> list[ConversationRecord]:
        if caller.is_patient:
            return self._conversations.list_for_patient(caller.participant_id)
        return self._conversations.list_for_doctor(caller.participant_id)

    def list_messages(self, caller: AuthenticatedCaller, conversation_id: str) -> list[MessageRecord]:
        self._authorize(caller, conversation_id)
        return self._conversations.list_messages(conversation_id)

    def post_message(self, caller: AuthenticatedCaller, conversation_id: str, content: str | None) -> MessageRecord:
        conversation = self._authorize(caller, conversation_id)

        normalized = (content or '').strip()
        if not normalized:
            raise InvalidArgument('Message content is required.')

        message = self._conversations.append_message(conversation.id, caller.user_id, normalized)

        try:
            self._publisher.publish(
                conversation_channel(conversation.id),
                {
                    'type': 'message.created',
                    'id': message.id,
                    'conversation_id': message.conversation_id,
                    'sender_id': message.sender_id,
                    'content': message.content,
                    'created_at': message.created_at.isoformat(),
                },
            )
        except Exception:
            logger.exception('Publishing message %s failed; it is stored and readable', message.id)

        return message

    def chat_window(self, caller: AuthenticatedCaller, conversation_id: str, now: datetime | None = None) -> ChatWindow:
        conversation = self._authorize(caller, conversation_id)
        completed_at = self._appointments.latest_completion(conversation.patient_id, conversation.doctor_id)
        return chat_window_status(completed_at, as_utc(now) if now else utcnow(), self._chat_window)

    def _authorize(self, caller: AuthenticatedCaller, conversation_id: str) -> ConversationRecord:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFound('Conversation not found.')

        owner_id = (
            conversation.patient_id
            if caller.participant_kind == ParticipantKind.PATIENT
            else conversation.doctor_id
        )
        if owner_id != caller.participant_id:
            raise Forbidden('Access denied.', reason='not_a_participant')
        return conversation
