from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from backend.core.errors import Forbidden, InvalidArgument
from backend.models.appointment import AppointmentStatus
from backend.routes.auth_routes import CallerResponse, me
from backend.routes.conversation_routes import (
    ChatWindowResponse,
    ConversationResponse,
    MessageResponse,
    PostMessageRequest,
    StartConversationRequest,
    get_chat_window,
    list_conversations,
    list_messages,
    post_message,
    start_conversation,
)

SCHEDULED_AT = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.conversation_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def completed_pair(services, patient, doctor):
    appointment = services.lifecycle.create_appointment(patient, doctor.participant_id, SCHEDULED_AT)
    services.lifecycle.apply_transition(appointment.id, doctor, AppointmentStatus.APPROVED)
    services.lifecycle.apply_transition(appointment.id, doctor, AppointmentStatus.COMPLETED)
    return patient, doctor


def test_start_conversation_request_rejects_blank_counterpart() -> None:
    with pytest.raises(ValidationError):
        StartConversationRequest(counterpart_id='   ')

    assert StartConversationRequest(counterpart_id=' doc-1 ').counterpart_id == 'doc-1'


def test_start_conversation_is_locked_before_completion(services, patient, doctor) -> None:
    with pytest.raises(Forbidden):
        start_conversation(StartConversationRequest(counterpart_id=doctor.participant_id), caller=patient, services=services)


def test_conversation_flow_over_routes(services, completed_pair) -> None:
    patient, doctor = completed_pair

    conversation = start_conversation(
        StartConversationRequest(counterpart_id=doctor.participant_id),
        caller=patient,
        services=services,
    )
    assert ConversationResponse.model_validate(conversation).patient_id == patient.participant_id
    assert [c.id for c in list_conversations(caller=doctor, services=services)] == [conversation.id]

    sent = post_message(conversation.id, PostMessageRequest(content=' Hi doctor '), caller=patient, services=services)
    assert MessageResponse.model_validate(sent).content == 'Hi doctor'

    messages = list_messages(conversation.id, caller=doctor, services=services)
    assert [m.id for m in messages] == [sent.id]


def test_post_message_rejects_whitespace(services, completed_pair) -> None:
    patient, doctor = completed_pair
    conversation = services.conversation_gate.ensure_conversation(patient.participant_id, doctor.participant_id)

    with pytest.raises(InvalidArgument):
        post_message(conversation.id, PostMessageRequest(content='   '), caller=patient, services=services)


def test_chat_window_route_reports_active_window(services, completed_pair) -> None:
    patient, doctor = completed_pair
    conversation = services.conversation_gate.ensure_conversation(patient.participant_id, doctor.participant_id)

    window = ChatWindowResponse.model_validate(get_chat_window(conversation.id, caller=doctor, services=services))

    assert window.active is True
    assert window.remaining_days == 7


def test_me_returns_caller_profile(patient) -> None:
    response = CallerResponse.model_validate(me(current_caller=patient))

    assert response.participant_id == patient.participant_id
    assert response.email == 'ada@example.com'
