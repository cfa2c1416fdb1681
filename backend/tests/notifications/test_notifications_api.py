"""Pruebas de los endpoints de notificaciones del panel."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import create_app
from app.repositories.factory import Repositories
from app.services.notifications import NotificationRelay

HEADERS = {"x-user-id": "agent-1"}


@pytest.fixture(name="notifications_app")
def fixture_notifications_app(repositories: Repositories):
    return create_app(repositories=repositories, sequencer_enabled=False)


@pytest.fixture(name="app_relay")
def fixture_app_relay(notifications_app) -> NotificationRelay:
    return notifications_app.state.relay


@pytest.fixture(name="client")
async def fixture_client(notifications_app) -> AsyncClient:
    transport = ASGITransport(app=notifications_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_requests_without_user_are_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/notifications")

    assert response.status_code == 401
    assert response.json()["detail"] == "Usuario no autenticado"


@pytest.mark.asyncio
async def test_list_and_mark_read(client: AsyncClient, app_relay: NotificationRelay) -> None:
    first = await app_relay.create_notification(
        kind="lead", title="Nuevo lead", message="Ann", user_id="agent-1"
    )
    await app_relay.create_notification(
        kind="campaign", title="Toque", message="Enviado", user_id="agent-1"
    )
    await app_relay.create_notification(
        kind="lead", title="Otro", message="De otro usuario", user_id="agent-2"
    )

    listed = await client.get("/api/notifications", headers=HEADERS)
    assert listed.status_code == 200
    body = listed.json()
    assert body["total"] == 2
    assert body["unread"] == 2
    assert [item["title"] for item in body["notifications"]] == ["Nuevo lead", "Toque"]

    marked = await client.patch(f"/api/notifications/{first.id}/read", headers=HEADERS)
    assert marked.status_code == 200
    assert marked.json() == {"success": True}

    unread = await client.get("/api/notifications", params={"unread": "true"}, headers=HEADERS)
    assert [item["title"] for item in unread.json()["notifications"]] == ["Toque"]


@pytest.mark.asyncio
async def test_mark_all_read_and_delete(client: AsyncClient, app_relay: NotificationRelay) -> None:
    stored = await app_relay.create_notification(
        kind="agent", title="Chat", message="Atender", user_id="agent-1", priority="high"
    )

    marked = await client.patch("/api/notifications/read-all", headers=HEADERS)
    assert marked.json() == {"success": True, "markedAsRead": 1}

    deleted = await client.delete(f"/api/notifications/{stored.id}", headers=HEADERS)
    assert deleted.status_code == 200
    assert app_relay.user_notifications("agent-1") == []

    again = await client.delete(f"/api/notifications/{stored.id}", headers=HEADERS)
    assert again.status_code == 404
    assert again.json()["detail"] == "Notificación no encontrada"


@pytest.mark.asyncio
async def test_unknown_notification_cannot_be_marked(client: AsyncClient) -> None:
    response = await client.patch("/api/notifications/nada/read", headers=HEADERS)

    assert response.status_code == 404
