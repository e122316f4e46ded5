"""Chat service: assembles context + history and asks the LLM."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .context_window import ContextPart
from .conversation import ChatMemory
from .errors import LLMError
from .llm import ChatMessage, ChatResponse, ChatRole, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a brief, clear assistant."


class ChatService:
    """Sends prompts with session context to an :class:`LLMProvider`."""

    def __init__(
        self,
        provider: LLMProvider,
        memory: ChatMemory | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._provider = provider
        self.memory = memory or ChatMemory()
        self._system_prompt = system_prompt

    def build_messages(
        self,
        prompt: str,
        context: list[ContextPart] | None = None,
    ) -> list[ChatMessage]:
        """``[system, *history, *context, prompt]``; server context speaks as assistant."""
        messages = [ChatMessage(role=ChatRole.SYSTEM, content=self._system_prompt)]
        messages.extend(self.memory.to_messages())
        for part in context or []:
            role = ChatRole.ASSISTANT if part.role == "server" else ChatRole.USER
            messages.append(ChatMessage(role=role, content=part.content))
        messages.append(ChatMessage(role=ChatRole.USER, content=prompt))
        return messages

    async def ask(self, prompt: str, context: list[ContextPart] | None = None) -> ChatResponse:
        messages = self.build_messages(prompt, context)
        response = await asyncio.to_thread(self._provider.complete, messages)
        self.memory.add_exchange(prompt, response.content)
        return response

    async def ask_safe(
        self,
        prompt: str,
        context: list[ContextPart] | None = None,
    ) -> dict[str, Any]:
        """Like :meth:`ask` but returns ``{"error", "details"}`` instead of raising."""
        try:
            response = await self.ask(prompt, context)
        except LLMError as exc:
            logger.warning("LLM call failed: %s", exc)
            return {"error": "LLM proxy error", "details": exc.details or str(exc)}
        except Exception as exc:  # noqa: BLE001
            logger.exception("unexpected LLM failure")
            return {"error": "LLM proxy error", "details": str(exc)}
        return {
            "reply": response.content,
            "tokens": response.usage.model_dump() if response.usage else None,
            "model": response.model,
        }
