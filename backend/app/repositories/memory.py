"""Repositorios en memoria para desarrollo local y pruebas."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import uuid4

from app.models.campaigns import Enrollment, EnrollmentStatus, TouchTemplate
from app.models.conversation import (
    CommunicationRecord,
    Conversation,
    ConversationMessage,
    Direction,
    Lead,
    MessageRole,
)

from .base import RepositoryError


class InMemoryLeadRepository:
    def __init__(self, leads: Iterable[Lead] = ()) -> None:
        self._leads: dict[str, Lead] = {lead.id: lead for lead in leads}

    async def find_by_id(self, lead_id: str) -> Lead | None:
        return self._leads.get(lead_id)

    async def create(self, fields: dict[str, Any]) -> Lead:
        lead = Lead(id=str(uuid4()), **fields)
        self._leads[lead.id] = lead
        return lead


class InMemoryConversationRepository:
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def find_by_lead_and_channel(self, lead_id: str, channel: str) -> Conversation | None:
        for conversation in self._conversations.values():
            if conversation.lead_id == lead_id and conversation.channel == channel:
                return conversation.model_copy(deep=True)
        return None

    async def create(self, lead_id: str, channel: str, agent_type: str | None) -> Conversation:
        conversation = Conversation(
            id=str(uuid4()), lead_id=lead_id, channel=channel, agent_type=agent_type
        )
        self._conversations[conversation.id] = conversation
        return conversation.model_copy(deep=True)

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise RepositoryError(f"Conversación {conversation_id} no encontrada")
        conversation.messages.append(ConversationMessage(role=role, content=content))


class InMemoryCommunicationRepository:
    def __init__(self) -> None:
        self.records: list[CommunicationRecord] = []

    async def create(
        self,
        lead_id: str,
        channel: str,
        direction: Direction,
        content: str,
        status: str,
        provider_id: str | None,
        metadata: dict[str, Any] | None,
    ) -> CommunicationRecord:
        record = CommunicationRecord(
            id=str(uuid4()),
            lead_id=lead_id,
            channel=channel,
            direction=direction,
            content=content,
            status=status,
            provider_id=provider_id,
            metadata=metadata or {},
        )
        self.records.append(record)
        return record


class InMemoryTemplateCatalog:
    def __init__(self, templates: Iterable[TouchTemplate] = ()) -> None:
        self._templates: dict[tuple[str, int], TouchTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: TouchTemplate) -> None:
        self._templates[(template.campaign_id, template.sequence_order)] = template

    async def get(self, campaign_id: str, sequence_order: int) -> TouchTemplate | None:
        return self._templates.get((campaign_id, sequence_order))


class InMemoryEnrollmentStore:
    """Tabla de inscripciones con compare-and-set sobre (paso, versión)."""

    def __init__(self, enrollments: Iterable[Enrollment] = ()) -> None:
        self._rows: dict[tuple[str, str], Enrollment] = {row.key: row for row in enrollments}
        self._lock = asyncio.Lock()

    async def list_due(self, now: datetime) -> list[Enrollment]:
        return [
            row.model_copy()
            for row in self._rows.values()
            if row.status is EnrollmentStatus.IN_PROGRESS
            and row.next_touch_at is not None
            and row.next_touch_at <= now
        ]

    async def get(self, lead_id: str, campaign_id: str) -> Enrollment | None:
        row = self._rows.get((lead_id, campaign_id))
        return row.model_copy() if row else None

    async def enroll(
        self, lead_id: str, campaign_id: str, *, next_touch_at: datetime | None
    ) -> Enrollment:
        async with self._lock:
            existing = self._rows.get((lead_id, campaign_id))
            if existing is not None:
                return existing.model_copy()
            status = (
                EnrollmentStatus.IN_PROGRESS
                if next_touch_at is not None
                else EnrollmentStatus.COMPLETED
            )
            row = Enrollment(
                lead_id=lead_id,
                campaign_id=campaign_id,
                status=status,
                next_touch_at=next_touch_at,
            )
            self._rows[row.key] = row
            return row.model_copy()

    async def compare_and_set(
        self,
        expected: Enrollment,
        *,
        current_step: int,
        status: EnrollmentStatus,
        next_touch_at: datetime | None,
        failed_attempts: int,
    ) -> Enrollment | None:
        async with self._lock:
            row = self._rows.get(expected.key)
            if (
                row is None
                or row.current_step != expected.current_step
                or row.lock_version != expected.lock_version
            ):
                return None
            if current_step < row.current_step:
                raise RepositoryError("current_step no puede retroceder")
            updated = Enrollment(
                lead_id=row.lead_id,
                campaign_id=row.campaign_id,
                current_step=current_step,
                status=status,
                next_touch_at=next_touch_at,
                lock_version=row.lock_version + 1,
                failed_attempts=failed_attempts,
            )
            self._rows[row.key] = updated
            return updated.model_copy()
