"""Bounded exponential retry for start-up races in MCP workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .config import RelaySettings
from .errors import INVALID_PARAMS_CODE, NOT_INITIALIZED_PATTERN, McpError, TransientProtocolError
from .telemetry import record_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True when *exc* looks like a worker not yet ready for the call.

    Two signatures qualify: the "before initialization was complete"
    message and JSON-RPC error ``-32602``. The second one is also what a
    genuinely invalid argument produces, so such calls are retried too
    before their error surfaces.
    """
    if isinstance(exc, TransientProtocolError):
        return True
    if isinstance(exc, McpError) and exc.code == INVALID_PARAMS_CODE:
        return True
    text = str(exc)
    return bool(NOT_INITIALIZED_PATTERN.search(text)) or str(INVALID_PARAMS_CODE) in text


@dataclass
class RetryPolicy:
    """Retry a call while it fails with a transient signature.

    The call is attempted at most ``tries`` times. Between attempts the
    policy sleeps ``delay`` seconds, starting at ``initial_delay`` and
    doubling up to ``max_delay``.
    """

    tries: int = 6
    initial_delay: float = 0.25
    max_delay: float = 1.5
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> RetryPolicy:
        return cls(
            tries=settings.retry_tries,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
        )

    def delays(self) -> list[float]:
        """The sleep schedule between consecutive attempts."""
        out: list[float] = []
        delay = self.initial_delay
        for _ in range(max(0, self.tries - 1)):
            out.append(delay)
            delay = min(delay * 2, self.max_delay)
        return out

    async def run(self, call: Callable[[], Awaitable[T]], *, label: str = "call") -> T:
        """Await ``call()`` until it succeeds or a non-retryable error occurs."""
        attempt = 0
        delay = self.initial_delay
        while True:
            try:
                return await call()
            except Exception as exc:
                if not is_transient(exc) or attempt >= self.tries - 1:
                    raise
                attempt += 1
                logger.info(
                    "%s failed with transient error (%s), retry %d/%d in %.2fs",
                    label,
                    exc,
                    attempt,
                    self.tries - 1,
                    delay,
                )
                record_retry(label, attempt, delay, exc)
                await self.sleep(delay)
                delay = min(delay * 2, self.max_delay)
