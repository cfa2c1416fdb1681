"""Registro liviano de agentes por canal."""

from collections.abc import Callable

from app.core.config import settings
from app.services import openai as openai_service

from .base import ChatResponder
from .keyword import KeywordChatAgent
from .openai_agent import OpenAIChatAgent

ResponderFactory = Callable[[], ChatResponder]


def get_chat_agent() -> ChatResponder:
    """Agente del widget: OpenAI cuando hay API key, reglas fijas en otro caso."""
    if openai_service.is_configured():
        return OpenAIChatAgent(openai_service.get_openai_client(), model=settings.openai_model)
    return KeywordChatAgent()


REGISTRY: dict[str, ResponderFactory] = {
    "chat": get_chat_agent,
}


def resolve_responder(channel: str) -> ChatResponder:
    """Devuelve el agente registrado para el canal solicitado."""
    try:
        factory = REGISTRY[channel]
    except KeyError as exc:
        raise ValueError(f"Responder for channel '{channel}' is not registered") from exc
    return factory()
