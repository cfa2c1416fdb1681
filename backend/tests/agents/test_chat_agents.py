"""Pruebas de los agentes de chat y su registro."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from openai import OpenAIError

from app.agents import registry
from app.agents.base import ChatContext, ResponderError
from app.agents.keyword import CONTACT, FALLBACK, PRICING, THANKS, KeywordChatAgent
from app.agents.openai_agent import OpenAIChatAgent, parse_reply
from app.models.conversation import Conversation, ConversationMessage, Lead


def _context(message: str, *, history: list[ConversationMessage] | None = None) -> ChatContext:
    lead = Lead(id="lead-1", name="Ann", source="chat_widget")
    conversation = Conversation(
        id="conv-1", lead_id="lead-1", channel="chat", messages=history or []
    )
    return ChatContext(lead=lead, conversation=conversation, message=message)


def _fake_client(create: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("message", "expected", "handover"),
    [
        ("How much does it COST?", PRICING, False),
        ("Please call me", CONTACT, False),
        ("thanks!", THANKS, False),
        ("Do you integrate with SAP?", FALLBACK, True),
    ],
)
async def test_keyword_agent_rules(message: str, expected: str, handover: bool) -> None:
    reply = await KeywordChatAgent().generate_response(_context(message))

    assert reply.content == expected
    assert reply.should_handover is handover


@pytest.mark.asyncio
async def test_keyword_agent_greets_by_name() -> None:
    greeting = await KeywordChatAgent().generate_initial_message(_context(""), "Initial chat contact")

    assert greeting.startswith("Hi Ann!")


def test_parse_reply_reads_json_fields() -> None:
    reply = parse_reply(
        '{"content": "Claro", "quick_replies": ["A", "B", "C", "D"], '
        '"should_handover": true, "handover_reason": "pide humano"}'
    )

    assert reply.content == "Claro"
    assert reply.quick_replies == ["A", "B", "C"]
    assert reply.should_handover is True
    assert reply.handover_reason == "pide humano"


@pytest.mark.parametrize("raw", [None, "", "no json", "[1, 2]", '{"content": ""}'])
def test_parse_reply_rejects_invalid_payloads(raw: str | None) -> None:
    with pytest.raises(ResponderError):
        parse_reply(raw)


@pytest.mark.asyncio
async def test_openai_agent_returns_model_reply() -> None:
    create = AsyncMock(return_value=_completion('{"content": "Hola", "quick_replies": ["Demo"]}'))
    history = [ConversationMessage(role="user", content="hola")]
    agent = OpenAIChatAgent(_fake_client(create), model="gpt-test")

    reply = await agent.generate_response(_context("hola", history=history))

    assert reply.content == "Hola"
    assert reply.quick_replies == ["Demo"]
    messages = create.await_args.kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert [m["content"] for m in messages[1:]] == ["hola"]


@pytest.mark.asyncio
async def test_openai_agent_falls_back_to_keywords_on_api_error() -> None:
    create = AsyncMock(side_effect=OpenAIError("sin cuota"))
    agent = OpenAIChatAgent(_fake_client(create), model="gpt-test")

    reply = await agent.generate_response(_context("what is the price?"))
    greeting = await agent.generate_initial_message(_context(""), "Initial chat contact")

    assert reply.content == PRICING
    assert greeting.startswith("Hi Ann!")


def test_resolve_unknown_responder_raises_error() -> None:
    with pytest.raises(ValueError):
        registry.resolve_responder("unknown")


def test_chat_responder_without_api_key_uses_keywords(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.openai.is_configured", lambda: False)

    assert isinstance(registry.resolve_responder("chat"), KeywordChatAgent)
