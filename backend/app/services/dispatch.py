"""Entrega de toques de campaña por correo o SMS."""

from __future__ import annotations

import re
from typing import Any, Protocol

from app.core.logging import get_logger, log_event
from app.models.campaigns import Enrollment, TouchTemplate
from app.models.conversation import Direction, Lead
from app.repositories.base import CommunicationRepository, LeadRepository, RepositoryError

from . import mailgun, twilio

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


class DispatchError(RuntimeError):
    """No fue posible entregar el toque al lead."""


class Dispatcher(Protocol):
    async def dispatch(self, enrollment: Enrollment, template: TouchTemplate) -> None: ...


def render_content(text: str, lead: Lead) -> str:
    """Sustituye marcadores `{{campo}}` con datos del lead; los desconocidos se conservan."""
    values: dict[str, Any] = {**lead.metadata, **lead.model_dump(exclude={"metadata"})}
    values.setdefault("first_name", lead.name.split(" ")[0] if lead.name else "")

    def _replace(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, text)


class TouchDispatcher:
    """Envía el toque por el canal de la plantilla y deja registro de auditoría.

    Sin proveedor configurado el toque se registra como `simulated`, igual que
    en desarrollo local.
    """

    def __init__(self, leads: LeadRepository, communications: CommunicationRepository) -> None:
        self._leads = leads
        self._communications = communications

    async def dispatch(self, enrollment: Enrollment, template: TouchTemplate) -> None:
        lead = await self._leads.find_by_id(enrollment.lead_id)
        if lead is None:
            raise DispatchError(f"Lead {enrollment.lead_id} no encontrado")

        content = render_content(template.content, lead)
        if template.channel == "sms":
            provider_id, status = await self._send_sms(lead, content)
        else:
            subject = render_content(template.subject or "", lead)
            provider_id, status = await self._send_email(lead, subject, content)

        log_event(
            logger,
            "dispatch.touch_sent",
            lead_id=lead.id,
            campaign_id=enrollment.campaign_id,
            step=template.sequence_order,
            channel=template.channel,
            status=status,
        )

        # El toque ya salió: un fallo de auditoría no debe provocar un reenvío.
        try:
            await self._communications.create(
                lead.id,
                template.channel,
                Direction.OUTBOUND,
                content,
                status,
                provider_id,
                {
                    "campaign_id": enrollment.campaign_id,
                    "step": template.sequence_order,
                    "subject": template.subject,
                },
            )
        except RepositoryError:
            logger.exception(
                "dispatch.record_failed",
                extra={"lead_id": lead.id, "campaign_id": enrollment.campaign_id},
            )

    async def _send_email(self, lead: Lead, subject: str, content: str) -> tuple[str | None, str]:
        if not lead.email:
            raise DispatchError(f"Lead {lead.id} no tiene correo")
        if not mailgun.is_configured():
            return None, "simulated"
        try:
            provider_id = await mailgun.send_email(to=lead.email, subject=subject, text=content)
        except mailgun.EmailDeliveryError as exc:
            raise DispatchError(str(exc)) from exc
        return provider_id or None, "sent"

    async def _send_sms(self, lead: Lead, content: str) -> tuple[str | None, str]:
        if not lead.phone:
            raise DispatchError(f"Lead {lead.id} no tiene teléfono")
        if not twilio.is_configured():
            return None, "simulated"
        try:
            provider_id = await twilio.send_sms(lead.phone, content)
        except twilio.SmsDeliveryError as exc:
            raise DispatchError(str(exc)) from exc
        return provider_id, "sent"
