"""Agente de chat determinista basado en palabras clave."""

from __future__ import annotations

from .base import ChatContext, ResponderReply

GREETING = "Hi {name}! Welcome, I'm here to help. What brings you here today?"
PRICING = "Our pricing varies based on your needs. Could you tell me more about your requirements?"
CONTACT = "I'd be happy to have someone reach out. What's the best way to contact you?"
THANKS = "Thank you! Someone from our team will be in touch soon."
FALLBACK = "I understand. Let me get someone who can better assist you."


class KeywordChatAgent:
    """Responde con reglas fijas; cualquier consulta no reconocida pide traspaso."""

    async def generate_initial_message(self, context: ChatContext, trigger: str) -> str:
        name = context.lead.name if context.lead.name else "there"
        return GREETING.format(name=name)

    async def generate_response(self, context: ChatContext) -> ResponderReply:
        text = (context.message or "").lower()

        if "price" in text or "cost" in text:
            return ResponderReply(content=PRICING, quick_replies=["Talk to someone"])
        if "contact" in text or "call" in text:
            return ResponderReply(content=CONTACT)
        if "thank" in text:
            return ResponderReply(content=THANKS)

        return ResponderReply(
            content=FALLBACK,
            should_handover=True,
            handover_reason="Complex query requires human assistance",
        )
