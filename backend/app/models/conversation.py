"""Modelos base para leads, conversaciones y registros de comunicación."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Lead(BaseModel):
    """Prospecto que puede recibir toques de campaña o conversar en el chat."""

    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    status: str = "new"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    """Conversación única por (lead, canal); sus mensajes sólo se agregan."""

    id: str
    lead_id: str
    channel: str
    agent_type: str | None = None
    status: str = "active"
    messages: list[ConversationMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class CommunicationRecord(BaseModel):
    """Entrada de auditoría inmutable, una por mensaje en cualquier dirección."""

    id: str
    lead_id: str
    channel: str
    direction: Direction
    content: str
    status: str
    provider_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}
