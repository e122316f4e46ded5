"""Context window: byte-bounded history for outbound LLM requests."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel

from .session import SessionState, TurnRole

CONTINUATION_MARKER = " …"

DEFAULT_BUDGET_BYTES = 2048
DEFAULT_CONTEXT_TURNS = 6

# Share of the budget the rolling summary may take before distribution.
SUMMARY_SHARE = 0.35


def byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def trim_to_bytes(text: str, max_bytes: int, marker: str = CONTINUATION_MARKER) -> str:
    """Cut *text* so its UTF-8 encoding fits in *max_bytes*.

    Cuts only on character boundaries. A cut text ends with *marker*, and
    the marker counts against the limit; when even the marker does not fit
    the bare prefix is returned.
    """
    if max_bytes <= 0:
        return ""
    if byte_len(text) <= max_bytes:
        return text

    marker_bytes = byte_len(marker)
    suffix = marker if marker_bytes <= max_bytes else ""
    limit = max_bytes - byte_len(suffix)

    # Longest prefix (in characters) whose encoding fits in limit.
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if byte_len(text[:mid]) <= limit:
            lo = mid
        else:
            hi = mid - 1
    return text[:lo] + suffix


class ContextPart(BaseModel):
    """One entry of the history payload sent with an LLM request."""

    role: str
    content: str


@dataclass
class ContextWindowManager:
    """Builds the ordered, byte-bounded context for one session.

    The rolling summary (if any) comes first, trimmed to
    :data:`SUMMARY_SHARE` of the budget. The last ``context_turns``
    host/server turns follow in chronological order; at each step the
    budget still left is split evenly over the turns not yet emitted.
    """

    budget_bytes: int = DEFAULT_BUDGET_BYTES
    context_turns: int = DEFAULT_CONTEXT_TURNS

    def build(self, session: SessionState | None) -> list[ContextPart]:
        if session is None:
            return []

        out: list[ContextPart] = []
        used = 0
        summary = session.summary
        if summary and summary.strip():
            content = trim_to_bytes(summary, int(self.budget_bytes * SUMMARY_SHARE))
            out.append(ContextPart(role="system", content=content))
            used = byte_len(content)

        turns = [t for t in session.messages if t.role in (TurnRole.HOST, TurnRole.SERVER)]
        recent = turns[-self.context_turns :] if self.context_turns > 0 else []

        for index, turn in enumerate(recent):
            remaining = self.budget_bytes - used
            if remaining <= 0:
                break
            allowance = remaining // (len(recent) - index)
            content = trim_to_bytes(turn.display_text, allowance)
            used += byte_len(content)
            out.append(ContextPart(role=turn.role.value, content=content))
        return out


def context_bytes(parts: list[ContextPart]) -> int:
    """Total UTF-8 size of the parts' content."""
    return sum(byte_len(p.content) for p in parts)
