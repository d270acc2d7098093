import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from backend.core.timeutils import as_utc, utcnow
from backend.models.conversation import Conversation, Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationRecord:
    id: str
    patient_id: str
    doctor_id: str
    created_at: datetime

    @classmethod
    def from_model(cls, conversation: Conversation) -> 'ConversationRecord':
        return cls(
            id=conversation.id,
            patient_id=conversation.patient_id,
            doctor_id=conversation.doctor_id,
            created_at=as_utc(conversation.created_at),
        )


@dataclass(frozen=True)
class MessageRecord:
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime

    @classmethod
    def from_model(cls, message: Message) -> 'MessageRecord':
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=as_utc(message.created_at),
        )


class ConversationRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def insert_or_fetch(self, patient_id: str, doctor_id: str) -> tuple[ConversationRecord, bool]:
        """Insert the pair's conversation, or return the row a concurrent writer created.

        The unique constraint on (patient_id, doctor_id) decides the winner;
        there is no separate existence check. Returns ``(record, created)``.
        """
        with self._session_factory() as db:
            conversation = Conversation(patient_id=patient_id, doctor_id=doctor_id, created_at=utcnow())
            db.add(conversation)
            try:
                db.commit()
                return ConversationRecord.from_model(conversation), True
            except IntegrityError:
                db.rollback()
                existing = db.query(Conversation).filter(
                    Conversation.patient_id == patient_id,
                    Conversation.doctor_id == doctor_id,
                ).first()
                if existing is None:
                    raise
                logger.debug('Conversation for patient %s and doctor %s already exists', patient_id, doctor_id)
                return ConversationRecord.from_model(existing), False

    def get(self, conversation_id: str) -> ConversationRecord | None:
        with self._session_factory() as db:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                return None
            return ConversationRecord.from_model(conversation)

    def count_for_pair(self, patient_id: str, doctor_id: str) -> int:
        with self._session_factory() as db:
            return db.query(Conversation).filter(
                Conversation.patient_id == patient_id,
                Conversation.doctor_id == doctor_id,
            ).count()

    def list_for_patient(self, patient_id: str) -> list[ConversationRecord]:
        with self._session_factory() as db:
            conversations = db.query(Conversation).filter(
                Conversation.patient_id == patient_id,
            ).order_by(Conversation.created_at.desc()).all()
            return [ConversationRecord.from_model(conversation) for conversation in conversations]

    def list_for_doctor(self, doctor_id: str) -> list[ConversationRecord]:
        with self._session_factory() as db:
            conversations = db.query(Conversation).filter(
                Conversation.doctor_id == doctor_id,
            ).order_by(Conversation.created_at.desc()).all()
            return [ConversationRecord.from_model(conversation) for conversation in conversations]

    def append_message(self, conversation_id: str, sender_id: str, content: str) -> MessageRecord:
        with self._session_factory() as db:
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                created_at=utcnow(),
            )
            db.add(message)
            db.commit()
            return MessageRecord.from_model(message)

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        with self._session_factory() as db:
            messages = db.query(Message).filter(
                Message.conversation_id == conversation_id,
            ).order_by(Message.created_at.asc(), Message.sequence.asc()).all()
            return [MessageRecord.from_model(message) for message in messages]
