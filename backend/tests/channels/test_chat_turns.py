"""Pruebas del procesador de turnos del chat en vivo."""

import json
from typing import Any

import pytest

from app.agents.base import ChatContext, ResponderError, ResponderReply
from app.agents.keyword import FALLBACK, PRICING, KeywordChatAgent
from app.channels.webchat.service import ChatTurnProcessor
from app.channels.webchat.session import ChatSessionRegistry, SessionState
from app.models.conversation import Direction
from app.repositories.factory import Repositories
from app.services.notifications import NotificationRelay


async def send(processor: ChatTurnProcessor, connection, payload: dict[str, Any]) -> None:
    await processor.handle_raw(connection, json.dumps(payload))


async def open_chat(processor: ChatTurnProcessor, connection, **fields: Any) -> dict[str, Any]:
    processor.connect(connection)
    await send(processor, connection, {"type": "chat:init", "sessionId": "s1", **fields})
    return connection.sent[-1]


@pytest.mark.asyncio
async def test_message_before_init_is_rejected(
    processor: ChatTurnProcessor, repositories: Repositories, make_connection
) -> None:
    widget = make_connection()
    processor.connect(widget)

    await send(processor, widget, {"type": "chat:message", "content": "hola"})

    assert widget.sent == [{"type": "error", "message": "No hay una sesión activa"}]
    assert repositories.communications.records == []


@pytest.mark.asyncio
async def test_anonymous_init_creates_chat_widget_lead(
    processor: ChatTurnProcessor, repositories: Repositories, make_connection
) -> None:
    widget = make_connection()

    event = await open_chat(processor, widget, leadId="anonymous", metadata={"name": "Ann"})

    assert event["type"] == "chat:connected"
    assert event["sessionId"] == "s1"
    assert "Ann" in event["welcomeMessage"]
    lead = await repositories.leads.find_by_id(event["leadId"])
    assert lead is not None
    assert lead.source == "chat_widget"
    assert lead.name == "Ann"
    assert lead.metadata["session_id"] == "s1"
    conversation = await repositories.conversations.find_by_lead_and_channel(lead.id, "chat")
    assert conversation is not None
    assert conversation.id == event["conversationId"]
    assert conversation.channel == "chat"
    assert conversation.messages == []


@pytest.mark.asyncio
async def test_init_with_known_lead_reuses_conversation(
    processor: ChatTurnProcessor, make_connection
) -> None:
    first = await open_chat(processor, make_connection(), leadId="lead-1")
    second = await open_chat(processor, make_connection(), leadId="lead-1")

    assert first["leadId"] == "lead-1"
    assert second["conversationId"] == first["conversationId"]


@pytest.mark.asyncio
async def test_chat_turn_emits_events_and_records_in_order(
    processor: ChatTurnProcessor, repositories: Repositories, make_connection
) -> None:
    widget = make_connection()
    await open_chat(processor, widget, leadId="lead-1")

    await send(processor, widget, {"type": "chat:message", "content": "What does it cost?"})

    events = widget.sent[1:]
    assert [event["type"] for event in events] == [
        "chat:typing",
        "chat:message",
        "chat:stopTyping",
    ]
    reply = events[1]
    assert reply["content"] == PRICING
    assert reply["sender"] == "agent"
    assert reply["quickReplies"] == ["Talk to someone"]

    inbound, outbound = repositories.communications.records
    assert inbound.direction is Direction.INBOUND
    assert inbound.status == "received"
    assert inbound.content == "What does it cost?"
    assert outbound.direction is Direction.OUTBOUND
    assert outbound.status == "delivered"
    assert outbound.metadata["quick_replies"] == ["Talk to someone"]

    conversation = await repositories.conversations.find_by_lead_and_channel("lead-1", "chat")
    assert conversation is not None
    assert [(m.role, m.content) for m in conversation.messages] == [
        ("user", "What does it cost?"),
        ("assistant", PRICING),
    ]


@pytest.mark.asyncio
async def test_handover_is_broadcast_to_identified_users(
    processor: ChatTurnProcessor, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})
    widget = make_connection()
    await open_chat(processor, widget, leadId="lead-1")

    await send(processor, widget, {"type": "chat:message", "content": "I need an integration"})

    assert widget.types()[-2:] == ["chat:message", "chat:stopTyping"]
    assert "chat_handover_requested" not in widget.types()
    [handover] = [e for e in dashboard.sent if e["type"] == "chat_handover_requested"]
    assert handover["reason"] == "Complex query requires human assistance"
    assert handover["lead"]["id"] == "lead-1"
    assert handover["conversation"]["messages"][-1]["content"] == FALLBACK
    [notice] = [e for e in dashboard.sent if e["type"] == "notification"]
    assert notice["data"]["type"] == "agent"
    assert notice["data"]["priority"] == "high"
    assert notice["data"]["metadata"]["conversation_id"] == handover["conversation"]["id"]


@pytest.mark.asyncio
async def test_disconnect_broadcasts_bound_session(
    processor: ChatTurnProcessor, relay: NotificationRelay, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})
    widget = make_connection()
    connected = await open_chat(processor, widget, leadId="anonymous")

    await processor.disconnect(widget)

    assert dashboard.sent[-1] == {
        "type": "chat:disconnected",
        "sessionId": "s1",
        "leadId": connected["leadId"],
    }
    await processor.disconnect(widget)
    assert dashboard.types().count("chat:disconnected") == 1

    await processor.disconnect(dashboard)
    assert relay.connection_for("agent-1") is None


@pytest.mark.asyncio
async def test_disconnect_before_init_does_not_broadcast(
    processor: ChatTurnProcessor, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})
    widget = make_connection()
    processor.connect(widget)

    await processor.disconnect(widget)

    assert "chat:disconnected" not in dashboard.types()


@pytest.mark.asyncio
async def test_unknown_lead_with_error_policy_is_rejected(
    repositories: Repositories, make_connection
) -> None:
    sessions = ChatSessionRegistry()
    processor = ChatTurnProcessor(
        sessions=sessions,
        relay=NotificationRelay(),
        leads=repositories.leads,
        conversations=repositories.conversations,
        communications=repositories.communications,
        responder=KeywordChatAgent(),
        unknown_lead_policy="error",
    )
    widget = make_connection()

    event = await open_chat(processor, widget, leadId="missing")

    assert event == {"type": "error", "message": "Lead no encontrado"}
    session = sessions.get(widget.connection_id)
    assert session is not None
    assert session.state is SessionState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_unknown_lead_with_create_policy_falls_back_to_new_lead(
    processor: ChatTurnProcessor, make_connection
) -> None:
    event = await open_chat(processor, make_connection(), leadId="missing")

    assert event["type"] == "chat:connected"
    assert event["leadId"] != "missing"


@pytest.mark.asyncio
async def test_invalid_payloads_get_error_event(
    processor: ChatTurnProcessor, make_connection
) -> None:
    widget = make_connection()
    processor.connect(widget)

    await processor.handle_raw(widget, "{no es json")
    await send(processor, widget, {"type": "desconocido"})
    await send(processor, widget, {"type": "chat:init"})

    assert widget.sent == [{"type": "error", "message": "Mensaje inválido"}] * 3


class FailingResponder(KeywordChatAgent):
    async def generate_response(self, context: ChatContext) -> ResponderReply:
        raise ResponderError("modelo no disponible")


@pytest.mark.asyncio
async def test_responder_failure_stops_typing_after_error(
    repositories: Repositories, make_connection
) -> None:
    processor = ChatTurnProcessor(
        sessions=ChatSessionRegistry(),
        relay=NotificationRelay(),
        leads=repositories.leads,
        conversations=repositories.conversations,
        communications=repositories.communications,
        responder=FailingResponder(),
    )
    widget = make_connection()
    await open_chat(processor, widget, leadId="lead-1")

    await send(processor, widget, {"type": "chat:message", "content": "hola"})

    assert widget.sent[1:] == [
        {"type": "chat:typing"},
        {"type": "error", "message": "No fue posible procesar el mensaje"},
        {"type": "chat:stopTyping"},
    ]
    [record] = repositories.communications.records
    assert record.direction is Direction.INBOUND


@pytest.mark.asyncio
async def test_notification_commands_require_identified_user(
    processor: ChatTurnProcessor, relay: NotificationRelay, make_connection
) -> None:
    anonymous = make_connection()
    processor.connect(anonymous)
    await send(processor, anonymous, {"type": "mark_all_notifications_read"})
    assert anonymous.sent == []

    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})
    notification = await relay.create_notification(
        kind="lead", title="Nuevo lead", message="Ann llegó", user_id="agent-1"
    )

    await send(
        processor,
        dashboard,
        {"type": "mark_notification_read", "notificationId": notification.id},
    )

    assert dashboard.sent[-1] == {
        "type": "notification_update",
        "data": {"id": notification.id, "read": True},
    }
    assert relay.user_notifications("agent-1", unread_only=True) == []


@pytest.mark.asyncio
async def test_lead_update_is_relayed(processor: ChatTurnProcessor, make_connection) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})

    await send(processor, dashboard, {"type": "lead_update", "leadId": "lead-1", "status": "hot"})

    assert dashboard.sent[-1] == {"type": "lead_update", "leadId": "lead-1", "status": "hot"}


@pytest.mark.asyncio
async def test_process_lead_enrolls_into_default_campaign(
    processor: ChatTurnProcessor, repositories: Repositories, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})

    await send(processor, dashboard, {"type": "process_lead", "leadId": "lead-1"})

    enrollment = await repositories.enrollments.get("lead-1", "c1")
    assert enrollment is not None
    assert enrollment.current_step == 0
    assert {"type": "lead_update", "leadId": "lead-1", "status": "enrolled"} in dashboard.sent
    assert dashboard.sent[-1]["type"] == "notification"
    assert dashboard.sent[-1]["data"]["type"] == "campaign"
    assert dashboard.sent[-1]["data"]["metadata"] == {"lead_id": "lead-1", "campaign_id": "c1"}


@pytest.mark.asyncio
async def test_new_chat_lead_notifies_dashboard(
    processor: ChatTurnProcessor, relay: NotificationRelay, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})

    connected = await open_chat(
        processor, make_connection(), leadId="anonymous", metadata={"name": "Ann"}
    )

    [notification] = relay.user_notifications("agent-1")
    assert notification.kind == "lead"
    assert notification.metadata == {"lead_id": connected["leadId"], "source": "chat_widget"}
    assert dashboard.sent[-1] == {"type": "notification", "data": notification.to_wire()}


@pytest.mark.asyncio
async def test_known_lead_init_does_not_notify(
    processor: ChatTurnProcessor, relay: NotificationRelay, make_connection
) -> None:
    dashboard = make_connection()
    processor.connect(dashboard)
    await send(processor, dashboard, {"type": "auth", "userId": "agent-1"})

    await open_chat(processor, make_connection(), leadId="lead-1")

    assert relay.user_notifications("agent-1") == []
    assert "notification" not in dashboard.types()
