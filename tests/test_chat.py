"""Tests for ChatService message assembly and error mapping."""

from __future__ import annotations

import pytest

from mcp_relay.chat import DEFAULT_SYSTEM_PROMPT, ChatService
from mcp_relay.context_window import ContextPart
from mcp_relay.errors import LLMError
from mcp_relay.llm import ChatMessage, ChatResponse, ChatRole, LLMProvider, StubLLMProvider


class RecordingProvider(LLMProvider):
    def __init__(self, reply: str = "ok", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.seen: list[list[ChatMessage]] = []

    def name(self) -> str:
        return "recording"

    def complete(self, messages: list[ChatMessage]) -> ChatResponse:
        self.seen.append(messages)
        if self.error is not None:
            raise self.error
        return ChatResponse(content=self.reply, model="rec")


def test_build_messages_order_and_roles() -> None:
    service = ChatService(StubLLMProvider())
    service.memory.add_exchange("earlier q", "earlier a")
    context = [
        ContextPart(role="system", content="- User: old"),
        ContextPart(role="host", content='{"name":"ls"}'),
        ContextPart(role="server", content="[files]"),
    ]

    messages = service.build_messages("what now?", context)

    assert [(m.role, m.content) for m in messages] == [
        (ChatRole.SYSTEM, DEFAULT_SYSTEM_PROMPT),
        (ChatRole.USER, "earlier q"),
        (ChatRole.ASSISTANT, "earlier a"),
        (ChatRole.USER, "- User: old"),
        (ChatRole.USER, '{"name":"ls"}'),
        (ChatRole.ASSISTANT, "[files]"),
        (ChatRole.USER, "what now?"),
    ]


@pytest.mark.asyncio
async def test_ask_records_exchange() -> None:
    provider = RecordingProvider(reply="42")
    service = ChatService(provider, system_prompt="terse")

    response = await service.ask("answer?")

    assert response.content == "42"
    assert provider.seen[0][0].content == "terse"
    assert [t.content for t in service.memory.turns] == ["answer?", "42"]


@pytest.mark.asyncio
async def test_ask_safe_success_payload() -> None:
    result = await ChatService(StubLLMProvider(model="tiny")).ask_safe("hi")

    assert result["model"] == "tiny"
    assert "stub response" in result["reply"]
    assert result["tokens"]["total_tokens"] > 0


@pytest.mark.asyncio
async def test_ask_safe_maps_llm_error() -> None:
    provider = RecordingProvider(error=LLMError("LLM HTTP 500", status=500, details="boom"))
    service = ChatService(provider)

    result = await service.ask_safe("hi")

    assert result == {"error": "LLM proxy error", "details": "boom"}
    assert service.memory.turns == []


@pytest.mark.asyncio
async def test_ask_safe_maps_unexpected_error() -> None:
    service = ChatService(RecordingProvider(error=RuntimeError("kaput")))

    result = await service.ask_safe("hi")

    assert result == {"error": "LLM proxy error", "details": "kaput"}
