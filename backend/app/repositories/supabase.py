"""Repositorios sobre Supabase/PostgREST vía REST."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.models.campaigns import Enrollment, EnrollmentStatus, TouchTemplate
from app.models.conversation import (
    CommunicationRecord,
    Conversation,
    Direction,
    Lead,
    MessageRole,
)

from .base import RepositoryError

logger = get_logger(__name__)

ENROLLMENT_COLUMNS = (
    "lead_id,campaign_id,current_step,status,next_touch_at,lock_version,failed_attempts"
)


class SupabaseClient:
    """Pequeña capa de acceso a Supabase REST compartida por los repositorios."""

    def __init__(
        self,
        base_url: str | None = None,
        service_role: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = base_url or settings.supabase_url
        if not base_url:
            raise RepositoryError("Supabase URL no configurada")
        self._base_url = base_url.rstrip("/")
        self._service_role = service_role or settings.supabase_service_role
        self._timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = self._headers(prefer, has_body=json is not None)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.exception("supabase.request_failed", extra={"path": path, "error": str(exc)})
            raise RepositoryError(f"Error al conectar a Supabase: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "supabase.response_error",
                extra={"path": path, "status": response.status_code, "body": response.text},
            )
            raise RepositoryError(f"Supabase respondió {response.status_code}: {response.text}")
        return response

    def _headers(self, prefer: str | None, *, has_body: bool) -> dict[str, str]:
        if not self._service_role:
            raise RepositoryError("Falta SUPABASE_SERVICE_ROLE para realizar la operación")
        headers: dict[str, str] = {
            "Accept": "application/json",
            "apikey": self._service_role,
            "Authorization": f"Bearer {self._service_role}",
        }
        if prefer:
            headers["Prefer"] = prefer
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def json_list(response: httpx.Response) -> list[dict[str, Any]]:
        payload = response.json() or []
        if not isinstance(payload, list):
            raise RepositoryError("Respuesta inesperada de Supabase")
        return [row for row in payload if isinstance(row, dict)]


def _parse(model: type, row: dict[str, Any]):
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise RepositoryError(f"Fila inválida para {model.__name__}: {exc}") from exc


class SupabaseLeadRepository:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def find_by_id(self, lead_id: str) -> Lead | None:
        params = {
            "select": "id,name,email,phone,source,status,metadata,created_at",
            "id": f"eq.{lead_id}",
            "limit": "1",
        }
        response = await self._client.request("GET", "/rest/v1/leads", params=params)
        rows = self._client.json_list(response)
        return _parse(Lead, rows[0]) if rows else None

    async def create(self, fields: dict[str, Any]) -> Lead:
        response = await self._client.request(
            "POST",
            "/rest/v1/leads",
            json=[fields],
            prefer="return=representation",
        )
        rows = self._client.json_list(response)
        if not rows:
            raise RepositoryError("Supabase no devolvió el lead creado")
        return _parse(Lead, rows[0])


class SupabaseConversationRepository:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def find_by_lead_and_channel(self, lead_id: str, channel: str) -> Conversation | None:
        params = {
            "select": "id,lead_id,channel,agent_type,status,messages,created_at",
            "lead_id": f"eq.{lead_id}",
            "channel": f"eq.{channel}",
            "order": "created_at.desc",
            "limit": "1",
        }
        response = await self._client.request("GET", "/rest/v1/conversations", params=params)
        rows = self._client.json_list(response)
        return _parse(Conversation, rows[0]) if rows else None

    async def create(self, lead_id: str, channel: str, agent_type: str | None) -> Conversation:
        payload = {
            "lead_id": lead_id,
            "channel": channel,
            "agent_type": agent_type,
            "status": "active",
            "messages": [],
        }
        response = await self._client.request(
            "POST",
            "/rest/v1/conversations",
            json=[payload],
            prefer="return=representation",
        )
        rows = self._client.json_list(response)
        if not rows:
            raise RepositoryError("Supabase no devolvió la conversación creada")
        return _parse(Conversation, rows[0])

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        # La función RPC agrega al arreglo JSONB en una sola sentencia.
        await self._client.request(
            "POST",
            "/rest/v1/rpc/append_conversation_message",
            json={
                "p_conversation_id": conversation_id,
                "p_role": role,
                "p_content": content,
            },
        )


class SupabaseCommunicationRepository:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

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
        payload = {
            "lead_id": lead_id,
            "channel": channel,
            "direction": str(direction),
            "content": content,
            "status": status,
            "provider_id": provider_id,
            "metadata": metadata or {},
        }
        response = await self._client.request(
            "POST",
            "/rest/v1/communications",
            json=[payload],
            prefer="return=representation",
        )
        rows = self._client.json_list(response)
        if not rows:
            raise RepositoryError("Supabase no devolvió la comunicación creada")
        return _parse(CommunicationRecord, rows[0])


class SupabaseTemplateCatalog:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def get(self, campaign_id: str, sequence_order: int) -> TouchTemplate | None:
        params = {
            "select": "campaign_id,sequence_order,delay_hours,channel,subject,content",
            "campaign_id": f"eq.{campaign_id}",
            "sequence_order": f"eq.{sequence_order}",
            "limit": "1",
        }
        response = await self._client.request("GET", "/rest/v1/touch_templates", params=params)
        rows = self._client.json_list(response)
        return _parse(TouchTemplate, rows[0]) if rows else None


class SupabaseEnrollmentStore:
    """Tabla `lead_campaign_status` con actualizaciones condicionales."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def list_due(self, now: datetime) -> list[Enrollment]:
        params = {
            "select": ENROLLMENT_COLUMNS,
            "status": f"eq.{EnrollmentStatus.IN_PROGRESS}",
            "next_touch_at": f"lte.{now.isoformat()}",
            "order": "next_touch_at.asc",
        }
        response = await self._client.request(
            "GET", "/rest/v1/lead_campaign_status", params=params
        )
        return [_parse(Enrollment, row) for row in self._client.json_list(response)]

    async def get(self, lead_id: str, campaign_id: str) -> Enrollment | None:
        params = {
            "select": ENROLLMENT_COLUMNS,
            "lead_id": f"eq.{lead_id}",
            "campaign_id": f"eq.{campaign_id}",
            "limit": "1",
        }
        response = await self._client.request(
            "GET", "/rest/v1/lead_campaign_status", params=params
        )
        rows = self._client.json_list(response)
        return _parse(Enrollment, rows[0]) if rows else None

    async def enroll(
        self, lead_id: str, campaign_id: str, *, next_touch_at: datetime | None
    ) -> Enrollment:
        status = (
            EnrollmentStatus.IN_PROGRESS if next_touch_at is not None else EnrollmentStatus.COMPLETED
        )
        payload = {
            "lead_id": lead_id,
            "campaign_id": campaign_id,
            "current_step": 0,
            "status": str(status),
            "next_touch_at": next_touch_at.isoformat() if next_touch_at else None,
            "lock_version": 0,
            "failed_attempts": 0,
        }
        response = await self._client.request(
            "POST",
            "/rest/v1/lead_campaign_status",
            params={"on_conflict": "lead_id,campaign_id", "select": ENROLLMENT_COLUMNS},
            json=[payload],
            prefer="resolution=ignore-duplicates,return=representation",
        )
        rows = self._client.json_list(response)
        if rows:
            return _parse(Enrollment, rows[0])
        existing = await self.get(lead_id, campaign_id)
        if existing is None:
            raise RepositoryError("No se pudo crear ni recuperar la inscripción")
        return existing

    async def compare_and_set(
        self,
        expected: Enrollment,
        *,
        current_step: int,
        status: EnrollmentStatus,
        next_touch_at: datetime | None,
        failed_attempts: int,
    ) -> Enrollment | None:
        params = {
            "lead_id": f"eq.{expected.lead_id}",
            "campaign_id": f"eq.{expected.campaign_id}",
            "current_step": f"eq.{expected.current_step}",
            "lock_version": f"eq.{expected.lock_version}",
            "select": ENROLLMENT_COLUMNS,
        }
        patch = {
            "current_step": current_step,
            "status": str(status),
            "next_touch_at": next_touch_at.isoformat() if next_touch_at else None,
            "lock_version": expected.lock_version + 1,
            "failed_attempts": failed_attempts,
        }
        response = await self._client.request(
            "PATCH",
            "/rest/v1/lead_campaign_status",
            params=params,
            json=patch,
            prefer="return=representation",
        )
        rows = self._client.json_list(response)
        # Sin filas: otra instancia avanzó la inscripción primero.
        return _parse(Enrollment, rows[0]) if rows else None
