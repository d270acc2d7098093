"""Conversation and message model definitions."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from backend.core.timeutils import utcnow
from backend.database import Base


class Conversation(Base):
    """The single messaging channel between one patient and one doctor."""
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("patient_id", "doctor_id", name="uq_conversations_patient_doctor"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Message(Base):
    """A chat message; sender_id is a user id."""
    __tablename__ = "messages"

    # Insertion sequence breaks ties between equal created_at values.
    sequence = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
