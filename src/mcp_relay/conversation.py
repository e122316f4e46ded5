"""Host-side chat history sent along with every LLM request."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field

from .llm import ChatMessage, ChatRole

CHAT_MAX_MESSAGES = 12
CHAT_MAX_CHARS = 6000


class ConversationTurn(BaseModel):
    """A single turn in a conversation."""

    role: ChatRole
    content: str
    timestamp: float = Field(default_factory=time.time)


class ChatMemory:
    """User/assistant history bounded by message count and characters.

    When over the character limit, the oldest user/assistant pair is dropped
    while more than two messages remain.
    """

    def __init__(
        self,
        max_messages: int = CHAT_MAX_MESSAGES,
        max_chars: int = CHAT_MAX_CHARS,
    ) -> None:
        self._turns: list[ConversationTurn] = []
        self._max_messages = max_messages
        self._max_chars = max_chars

    @property
    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def add_exchange(self, prompt: str, reply: str) -> None:
        self._turns.append(ConversationTurn(role=ChatRole.USER, content=prompt))
        self._turns.append(ConversationTurn(role=ChatRole.ASSISTANT, content=reply))
        self._trim()

    def to_messages(self) -> list[ChatMessage]:
        return [ChatMessage(role=t.role, content=t.content) for t in self._turns]

    def clear(self) -> None:
        self._turns.clear()

    def summary(self) -> dict[str, Any]:
        return {
            "message_count": len(self._turns),
            "max_messages": self._max_messages,
            "chars": self._chars(),
            "max_chars": self._max_chars,
        }

    def _trim(self) -> None:
        if len(self._turns) > self._max_messages:
            self._turns = self._turns[-self._max_messages :]
        while self._chars() > self._max_chars and len(self._turns) > 2:
            self._turns = self._turns[2:]

    def _chars(self) -> int:
        return sum(len(t.content) for t in self._turns)
