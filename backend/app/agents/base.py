"""Contratos compartidos por los agentes conversacionales."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from app.models.conversation import Conversation, Lead


class ResponderError(RuntimeError):
    """El agente no pudo generar una respuesta."""


@dataclass(slots=True)
class SessionInfo:
    session_id: str | None
    connection_id: str | None = None


@dataclass(slots=True)
class ChatContext:
    """Contexto completo de un turno: lead, mensaje, conversación y sesión."""

    lead: Lead
    conversation: Conversation | None = None
    message: str | None = None
    session: SessionInfo | None = None


@dataclass(slots=True)
class ResponderReply:
    content: str
    quick_replies: list[str] = field(default_factory=list)
    should_handover: bool = False
    handover_reason: str | None = None


class ChatResponder(Protocol):
    async def generate_initial_message(self, context: ChatContext, trigger: str) -> str: ...

    async def generate_response(self, context: ChatContext) -> ResponderReply: ...
