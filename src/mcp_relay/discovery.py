"""Tool discovery: probes ``tools/list`` parameter shapes in priority order."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .retry import RetryPolicy

logger = logging.getLogger(__name__)

Sender = Callable[[str, dict[str, Any] | None], Awaitable[Any]]


@dataclass(frozen=True)
class ListVariant:
    """One ``tools/list`` parameter shape. ``params=None`` sends no params."""

    label: str
    params: dict[str, Any] | None


# Servers disagree on what an empty listing request looks like.
LIST_VARIANTS: tuple[ListVariant, ...] = (
    ListVariant("tools/list {}", {}),
    ListVariant("tools/list (no params)", None),
    ListVariant("tools/list {limit:200}", {"limit": 200}),
    ListVariant('tools/list {cursor:""}', {"cursor": ""}),
)


class ToolDiscovery:
    """Lists a server's tools, falling back through :data:`LIST_VARIANTS`.

    Each variant gets one full pass through the retry policy. The first
    variant that succeeds wins; its label is kept in :attr:`last_variant`
    so failures and successes can be reported with the shape that was used.
    """

    def __init__(
        self,
        retry: RetryPolicy | None = None,
        variants: tuple[ListVariant, ...] = LIST_VARIANTS,
    ) -> None:
        self._retry = retry or RetryPolicy()
        self._variants = variants
        self.last_variant: str | None = None

    async def list_tools(self, send: Sender) -> Any:
        """Return the raw ``tools/list`` result from the first working variant.

        Raises:
            Exception: The error of the last variant when every variant fails.
        """
        last_exc: Exception | None = None
        for variant in self._variants:
            self.last_variant = variant.label

            async def attempt(params: dict[str, Any] | None = variant.params) -> Any:
                return await send("tools/list", params)

            try:
                result = await self._retry.run(attempt, label=variant.label)
            except Exception as exc:
                logger.info("%s failed: %s", variant.label, exc)
                last_exc = exc
                continue
            logger.debug("tools listed with %s", variant.label)
            return result

        assert last_exc is not None  # noqa: S101
        raise last_exc
