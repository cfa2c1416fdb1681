"""Envío de correos vía la API HTTP de Mailgun."""

from __future__ import annotations

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

MAILGUN_API_BASE = "https://api.mailgun.net/v3"


class EmailDeliveryError(RuntimeError):
    """Mailgun rechazó o no pudo recibir el correo."""


def is_configured() -> bool:
    return bool(settings.mailgun_api_key and settings.mailgun_domain)


async def send_email(*, to: str, subject: str, text: str, sender: str | None = None) -> str:
    """Envía un correo de texto plano y retorna el id asignado por Mailgun."""
    if not settings.mailgun_api_key or not settings.mailgun_domain:
        raise EmailDeliveryError("Mailgun no está configurado (MAILGUN_API_KEY/DOMAIN)")

    url = f"{MAILGUN_API_BASE}/{settings.mailgun_domain}/messages"
    data = {
        "from": sender or settings.mailgun_from or f"no-reply@{settings.mailgun_domain}",
        "to": to,
        "subject": subject,
        "text": text,
    }
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, data=data, auth=("api", settings.mailgun_api_key))
    except httpx.RequestError as exc:
        msg = f"Error de red al enviar correo: {exc}"
        logger.exception(msg)
        raise EmailDeliveryError(msg) from exc

    if response.status_code >= 400:
        msg = (
            "Mailgun respondió error al enviar correo"
            f" (status={response.status_code}, body={response.text!r})"
        )
        logger.error(msg)
        raise EmailDeliveryError(msg)

    payload = response.json() or {}
    return str(payload.get("id") or "")
