from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator

from backend.auth.dependencies import get_services, require_roles
from backend.auth.identity import AuthenticatedCaller
from backend.models.user import UserRole
from backend.repositories.conversations import ConversationRecord, MessageRecord
from backend.routes.appointment_routes import ensure_database_ready
from backend.services.conversation_gate import ChatWindow
from backend.services.registry import Services

router = APIRouter(tags=['conversations'])

any_participant = require_roles(UserRole.PATIENT, UserRole.DOCTOR)


class StartConversationRequest(BaseModel):
    counterpart_id: str

    @field_validator('counterpart_id')
    @classmethod
    def validate_counterpart_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Counterpart is required.')
        return normalized


class PostMessageRequest(BaseModel):
    content: str


class ConversationResponse(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class ChatWindowResponse(BaseModel):
    active: bool
    reason: str
    remaining_days: int | None = None
    completed_at: datetime | None = None
    window_ends_at: datetime | None = None

    class Config:
        from_attributes = True


@router.get('', response_model=list[ConversationResponse])
def list_conversations(
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> list[ConversationRecord]:
    ensure_database_ready()

    return services.conversation_gate.list_conversations(caller)


@router.post('', response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
def start_conversation(
    data: StartConversationRequest,
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> ConversationRecord:
    ensure_database_ready()

    return services.conversation_gate.start_conversation(caller, data.counterpart_id)


@router.get('/{conversation_id}/messages', response_model=list[MessageResponse])
def list_messages(
    conversation_id: str,
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> list[MessageRecord]:
    ensure_database_ready()

    return services.conversation_gate.list_messages(caller, conversation_id)


@router.post('/{conversation_id}/messages', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def post_message(
    conversation_id: str,
    data: PostMessageRequest,
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> MessageRecord:
    ensure_database_ready()

    return services.conversation_gate.post_message(caller, conversation_id, data.content)


@router.get('/{conversation_id}/active', response_model=ChatWindowResponse)
def get_chat_window(
    conversation_id: str,
    caller: AuthenticatedCaller = Depends(any_participant),
    services: Services = Depends(get_services),
) -> ChatWindow:
    ensure_database_ready()

    return services.conversation_gate.chat_window(caller, conversation_id)
