"""Fixtures compartidas para las pruebas."""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from app.agents.keyword import KeywordChatAgent
from app.channels.webchat.service import ChatTurnProcessor
from app.channels.webchat.session import ChatSessionRegistry
from app.main import app
from app.models.campaigns import TouchTemplate
from app.models.conversation import Lead
from app.repositories.factory import Repositories
from app.repositories.memory import (
    InMemoryCommunicationRepository,
    InMemoryConversationRepository,
    InMemoryEnrollmentStore,
    InMemoryLeadRepository,
    InMemoryTemplateCatalog,
)
from app.services.notifications import NotificationRelay

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeConnection:
    """Conexión que acumula los eventos enviados."""

    def __init__(self, connection_id: str | None = None, *, fail: bool = False) -> None:
        self.connection_id = connection_id or uuid4().hex
        self.sent: list[dict[str, Any]] = []
        self._fail = fail

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._fail:
            raise ConnectionError("socket cerrado")
        self.sent.append(payload)

    def types(self) -> list[str]:
        return [item["type"] for item in self.sent]


@pytest.fixture(name="async_client")
async def fixture_async_client() -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(name="make_connection")
def fixture_make_connection() -> type[FakeConnection]:
    return FakeConnection


@pytest.fixture(name="now")
def fixture_now() -> datetime:
    return T0


@pytest.fixture(name="lead")
def fixture_lead() -> Lead:
    return Lead(
        id="lead-1",
        name="Ann Lee",
        email="ann@example.com",
        phone="+15550001111",
        source="web_form",
        metadata={"company": "Acme"},
    )


@pytest.fixture(name="templates")
def fixture_templates() -> InMemoryTemplateCatalog:
    """Campaña `c1` de tres toques: inmediato, +24h y +48h."""
    return InMemoryTemplateCatalog(
        [
            TouchTemplate(
                campaign_id="c1",
                sequence_order=1,
                delay_hours=0,
                channel="email",
                subject="Hola {{first_name}}",
                content="Gracias por tu interés, {{first_name}}.",
            ),
            TouchTemplate(
                campaign_id="c1", sequence_order=2, delay_hours=24, channel="sms", content="¿Hablamos?"
            ),
            TouchTemplate(
                campaign_id="c1", sequence_order=3, delay_hours=48, channel="email", content="Último aviso"
            ),
        ]
    )


@pytest.fixture(name="repositories")
def fixture_repositories(lead: Lead, templates: InMemoryTemplateCatalog) -> Repositories:
    return Repositories(
        leads=InMemoryLeadRepository([lead]),
        conversations=InMemoryConversationRepository(),
        communications=InMemoryCommunicationRepository(),
        enrollments=InMemoryEnrollmentStore(),
        templates=templates,
    )


@pytest.fixture(name="relay")
def fixture_relay() -> NotificationRelay:
    return NotificationRelay()


@pytest.fixture(name="processor")
def fixture_processor(repositories: Repositories, relay: NotificationRelay) -> ChatTurnProcessor:
    return ChatTurnProcessor(
        sessions=ChatSessionRegistry(),
        relay=relay,
        leads=repositories.leads,
        conversations=repositories.conversations,
        communications=repositories.communications,
        responder=KeywordChatAgent(),
        enrollments=repositories.enrollments,
        templates=repositories.templates,
        default_campaign_id="c1",
        clock=lambda: T0,
    )
