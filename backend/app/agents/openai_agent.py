"""Agente de chat respaldado por OpenAI Chat Completions."""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from app.core.logging import get_logger

from .base import ChatContext, ResponderError, ResponderReply
from .keyword import KeywordChatAgent

logger = get_logger(__name__)

HISTORY_LIMIT = 20

SYSTEM_PROMPT = (
    "You are a chat agent providing real-time support on a website. "
    "Be responsive and helpful, and guide visitors towards talking with the sales team. "
    "Keep replies to 2-3 sentences. Reply ONLY with a JSON object with keys: "
    '"content" (string), "quick_replies" (up to 3 short strings), '
    '"should_handover" (boolean, true when a human should take over) and '
    '"handover_reason" (string or null).'
)

GREETING_PROMPT = (
    "You are starting a website chat conversation. Be welcoming and immediately helpful. "
    "Write a brief, friendly greeting (2-3 sentences) that mentions you are here to help "
    "and asks how you can assist. Reply with plain text only."
)


def _lead_summary(context: ChatContext) -> str:
    lead = context.lead
    return f"Visitor name: {lead.name or 'Visitor'}\nSource: {lead.source or 'unknown'}"


class OpenAIChatAgent:
    """Genera respuestas con OpenAI y usa reglas fijas cuando la API falla."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        fallback: KeywordChatAgent | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._fallback = fallback or KeywordChatAgent()

    async def generate_initial_message(self, context: ChatContext, trigger: str) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": GREETING_PROMPT},
                    {"role": "user", "content": f"{_lead_summary(context)}\nFocus: {trigger}"},
                ],
            )
            text = (completion.choices[0].message.content or "").strip()
            if not text:
                raise ResponderError("OpenAI devolvió un saludo vacío")
            return text
        except (OpenAIError, ResponderError, IndexError) as exc:
            logger.warning("agent.openai_greeting_failed", extra={"error": str(exc)})
            return await self._fallback.generate_initial_message(context, trigger)

    async def generate_response(self, context: ChatContext) -> ResponderReply:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_messages(context),
                response_format={"type": "json_object"},
            )
            return parse_reply(completion.choices[0].message.content)
        except (OpenAIError, ResponderError, IndexError) as exc:
            logger.warning(
                "agent.openai_response_failed",
                extra={"lead_id": context.lead.id, "error": str(exc)},
            )
            return await self._fallback.generate_response(context)

    def _build_messages(self, context: ChatContext) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": f"{SYSTEM_PROMPT}\n\n{_lead_summary(context)}"}
        ]
        history = context.conversation.messages if context.conversation else []
        for item in history[-HISTORY_LIMIT:]:
            messages.append({"role": item.role, "content": item.content})
        # El historial ya incluye el mensaje entrante cuando viene de un turno de chat.
        if not history or history[-1].role != "user" or history[-1].content != context.message:
            messages.append({"role": "user", "content": context.message or ""})
        return messages


def parse_reply(raw: str | None) -> ResponderReply:
    """Interpreta el JSON devuelto por el modelo."""
    if not raw:
        raise ResponderError("OpenAI devolvió una respuesta vacía")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ResponderError(f"Respuesta no es JSON: {raw!r}") from exc
    if not isinstance(data, dict):
        raise ResponderError(f"Respuesta inesperada: {data!r}")

    content = str(data.get("content") or "").strip()
    if not content:
        raise ResponderError("La respuesta no incluye `content`")
    quick_replies = data.get("quick_replies") or []
    if not isinstance(quick_replies, list):
        quick_replies = []
    reason = data.get("handover_reason")
    return ResponderReply(
        content=content,
        quick_replies=[str(item) for item in quick_replies][:3],
        should_handover=bool(data.get("should_handover")),
        handover_reason=str(reason) if reason else None,
    )
