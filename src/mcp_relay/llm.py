"""Remote text generation: OpenAI-compatible chat completions over HTTP."""

from __future__ import annotations

import logging
import math
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from enum import StrEnum

import requests
from pydantic import BaseModel

from .config import RelaySettings
from .errors import LLMError

logger = logging.getLogger(__name__)

# Statuses answered with one retry at a reduced token budget.
_RETRYABLE_STATUSES = frozenset({429, 503})
_DEFAULT_RETRY_AFTER = 2.0
_MAX_RETRY_WAIT = 8.0
_MIN_RETRY_MAX_TOKENS = 128
_TRY_AGAIN_IN = re.compile(r"try again in ([0-9.]+)s", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ChatRole(StrEnum):
    """Role of a message participant."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    """Request payload sent to the chat completions endpoint."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int
    temperature: float
    stream: bool = False


class TokenUsage(BaseModel):
    """Token consumption metrics for a single request."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Response returned from an LLM provider."""

    content: str
    model: str
    usage: TokenUsage | None = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base class for text-generation backends."""

    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name."""

    @abstractmethod
    def complete(self, messages: list[ChatMessage]) -> ChatResponse:
        """Run one chat completion."""


class StubLLMProvider(LLMProvider):
    """Returns canned responses without making real HTTP calls."""

    _CANNED = "This is a stub response for testing purposes."

    def __init__(self, model: str = "stub") -> None:
        self._model = model

    def name(self) -> str:
        return "stub"

    def complete(self, messages: list[ChatMessage]) -> ChatResponse:
        prompt_tokens = sum(len(m.content.split()) for m in messages)
        reply = f"{self._CANNED} (model={self._model})"
        completion_tokens = len(reply.split())
        return ChatResponse(
            content=reply,
            model=self._model,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


def parse_retry_after(headers: Mapping[str, str], body: str) -> float | None:
    """Server-suggested wait in seconds, from ``Retry-After`` or the error text."""
    header = headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    match = _TRY_AGAIN_IN.search(body)
    if match:
        return float(math.ceil(float(match.group(1))))
    return None


class ChatCompletionClient(LLMProvider):
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint (Groq by default).

    A 429 or 503 answer is retried once, after the server-suggested wait
    (capped at 8s), with half the token budget (at least 128 tokens).
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        max_tokens: int = 256,
        temperature: float = 0.2,
        timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> ChatCompletionClient:
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        )

    def name(self) -> str:
        return "chat-completions"

    @property
    def model(self) -> str:
        return self._model

    def complete(self, messages: list[ChatMessage]) -> ChatResponse:
        request = ChatRequest(
            model=self._model,
            messages=messages,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        try:
            return self._post(request)
        except LLMError as exc:
            if exc.status not in _RETRYABLE_STATUSES:
                raise
            wait = min(exc.retry_after or _DEFAULT_RETRY_AFTER, _MAX_RETRY_WAIT)
            reduced = max(_MIN_RETRY_MAX_TOKENS, request.max_tokens // 2)
            logger.warning(
                "LLM HTTP %s, retrying once in %.1fs with max_tokens=%d",
                exc.status,
                wait,
                reduced,
            )
            self._sleep(wait)
            return self._post(request.model_copy(update={"max_tokens": reduced}))

    def _post(self, request: ChatRequest) -> ChatResponse:
        if not self._api_key:
            msg = "LLM API key not configured"
            raise LLMError(msg)
        try:
            resp = requests.post(
                self._url,
                headers={
                    "authorization": f"Bearer {self._api_key}",
                    "content-type": "application/json",
                },
                json=request.model_dump(mode="json"),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise LLMError(f"LLM request failed: {exc}", details=str(exc)) from exc

        body = resp.text
        if not resp.ok:
            raise LLMError(
                f"LLM HTTP {resp.status_code}",
                status=resp.status_code,
                details=body,
                retry_after=parse_retry_after(resp.headers, body),
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise LLMError("LLM returned invalid JSON", details=body) from exc

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage")
        return ChatResponse(
            content=content,
            model=data.get("model", request.model),
            usage=TokenUsage.model_validate(usage) if isinstance(usage, dict) else None,
        )
