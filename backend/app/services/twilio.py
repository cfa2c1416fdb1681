"""Cliente centralizado para Twilio."""

from functools import lru_cache

from starlette.concurrency import run_in_threadpool
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from app.core.config import settings


class SmsDeliveryError(RuntimeError):
    """Twilio rechazó o no pudo recibir el SMS."""


def is_configured() -> bool:
    return bool(
        settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number
    )


@lru_cache(maxsize=1)
def get_twilio_client() -> Client:
    """Retorna el cliente reutilizable de Twilio."""
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        msg = "Twilio credentials are not configured"
        raise RuntimeError(msg)
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


async def send_sms(to: str, body: str) -> str:
    """Envía un SMS y retorna el SID del mensaje.

    El SDK de Twilio es síncrono, por lo que la llamada se ejecuta en el
    threadpool para no bloquear el event loop.
    """
    client = get_twilio_client()
    try:
        message = await run_in_threadpool(
            client.messages.create,
            to=to,
            from_=settings.twilio_from_number,
            body=body,
        )
    except TwilioException as exc:
        raise SmsDeliveryError(f"Twilio no aceptó el SMS: {exc}") from exc
    return str(message.sid)
