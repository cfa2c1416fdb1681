"""Esquemas de mensajes del socket de chat.

Todo mensaje lleva un discriminador `type`. Los entrantes forman una unión
etiquetada que el procesador recorre con `match`; los salientes se serializan
con alias camelCase.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from app.models.conversation import Conversation, Lead


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# Entrantes


class AuthMessage(WireModel):
    type: Literal["auth"]
    user_id: str | None = None


class ChatInitMessage(WireModel):
    type: Literal["chat:init"]
    session_id: str = Field(..., min_length=1, description="Identificador opaco generado por el widget.")
    lead_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChatTextMessage(WireModel):
    type: Literal["chat:message"]
    content: str = Field(..., min_length=1)
    session_id: str | None = None


class MarkNotificationReadMessage(WireModel):
    type: Literal["mark_notification_read"]
    notification_id: str | None = None


class MarkAllNotificationsReadMessage(WireModel):
    type: Literal["mark_all_notifications_read"]


class DeleteNotificationMessage(WireModel):
    type: Literal["delete_notification"]
    notification_id: str | None = None


class AgentUpdateMessage(WireModel):
    type: Literal["agent_update"]
    agent: Any = None
    message: Any = None


class LeadUpdateMessage(WireModel):
    type: Literal["lead_update"]
    lead_id: str | None = None
    status: str | None = None


class ProcessLeadMessage(WireModel):
    type: Literal["process_lead"]
    lead_id: str | None = None


InboundMessage = Annotated[
    Union[
        AuthMessage,
        ChatInitMessage,
        ChatTextMessage,
        MarkNotificationReadMessage,
        MarkAllNotificationsReadMessage,
        DeleteNotificationMessage,
        AgentUpdateMessage,
        LeadUpdateMessage,
        ProcessLeadMessage,
    ],
    Field(discriminator="type"),
]

_INBOUND_ADAPTER: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Valida el JSON recibido; lanza `pydantic.ValidationError` si no es válido."""
    return _INBOUND_ADAPTER.validate_json(raw)


# Salientes


class ChatConnectedEvent(WireModel):
    type: Literal["chat:connected"] = "chat:connected"
    session_id: str
    lead_id: str
    conversation_id: str
    welcome_message: str


class ChatReplyEvent(WireModel):
    type: Literal["chat:message"] = "chat:message"
    id: str = Field(default_factory=lambda: uuid4().hex)
    content: str
    sender: Literal["agent"] = "agent"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    quick_replies: list[str] = Field(default_factory=list)


class TypingEvent(WireModel):
    type: Literal["chat:typing"] = "chat:typing"


class StopTypingEvent(WireModel):
    type: Literal["chat:stopTyping"] = "chat:stopTyping"


class ChatDisconnectedEvent(WireModel):
    type: Literal["chat:disconnected"] = "chat:disconnected"
    session_id: str | None
    lead_id: str | None


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str


class AgentUpdateEvent(WireModel):
    type: Literal["agent_update"] = "agent_update"
    agent: Any = None
    message: Any = None


class LeadUpdateEvent(WireModel):
    type: Literal["lead_update"] = "lead_update"
    lead_id: str | None
    status: str | None


class HandoverRequestedEvent(WireModel):
    type: Literal["chat_handover_requested"] = "chat_handover_requested"
    lead: Lead
    conversation: Conversation
    reason: str | None = None
