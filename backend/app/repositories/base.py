"""Interfaces de persistencia consumidas por el secuenciador y el chat."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from app.models.campaigns import Enrollment, EnrollmentStatus, TouchTemplate
from app.models.conversation import (
    CommunicationRecord,
    Conversation,
    Direction,
    Lead,
    MessageRole,
)


class RepositoryError(RuntimeError):
    """Errores de persistencia para servicios externos."""


class LeadRepository(Protocol):
    async def find_by_id(self, lead_id: str) -> Lead | None: ...

    async def create(self, fields: dict[str, Any]) -> Lead: ...


class ConversationRepository(Protocol):
    async def find_by_lead_and_channel(self, lead_id: str, channel: str) -> Conversation | None: ...

    async def create(self, lead_id: str, channel: str, agent_type: str | None) -> Conversation: ...

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None: ...


class CommunicationRepository(Protocol):
    async def create(
        self,
        lead_id: str,
        channel: str,
        direction: Direction,
        content: str,
        status: str,
        provider_id: str | None,
        metadata: dict[str, Any] | None,
    ) -> CommunicationRecord: ...


class TemplateCatalog(Protocol):
    async def get(self, campaign_id: str, sequence_order: int) -> TouchTemplate | None: ...


class EnrollmentStore(Protocol):
    async def list_due(self, now: datetime) -> list[Enrollment]:
        """Inscripciones `in_progress` con `next_touch_at <= now`, como copia."""
        ...

    async def get(self, lead_id: str, campaign_id: str) -> Enrollment | None: ...

    async def enroll(self, lead_id: str, campaign_id: str, *, next_touch_at: datetime | None) -> Enrollment:
        """Crea la inscripción en el paso 0 o devuelve la existente."""
        ...

    async def compare_and_set(
        self,
        expected: Enrollment,
        *,
        current_step: int,
        status: EnrollmentStatus,
        next_touch_at: datetime | None,
        failed_attempts: int,
    ) -> Enrollment | None:
        """Aplica el cambio sólo si la fila conserva el paso y versión leídos.

        Devuelve la fila actualizada, o `None` cuando la lectura quedó obsoleta
        porque otra instancia la modificó primero.
        """
        ...
