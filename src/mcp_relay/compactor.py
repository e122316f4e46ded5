"""Session compaction: folds evicted turns into a rolling summary."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .context_window import DEFAULT_CONTEXT_TURNS, trim_to_bytes
from .session import SessionState, Turn, TurnRole
from .telemetry import trace_compaction

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSION_BYTES = 500 * 1024
DEFAULT_SUMMARY_BULLETS = 5
DEFAULT_SUMMARY_MAX_BYTES = 2000
BULLET_TEXT_CHARS = 160

_WHITESPACE = re.compile(r"\s+")


@dataclass
class CompactionReport:
    """What a compaction pass did."""

    size_before: int
    size_after: int
    kept: int
    evicted: int
    summarized: int


def render_bullet(turn: Turn, max_chars: int = BULLET_TEXT_CHARS) -> str:
    who = "User" if turn.role is TurnRole.HOST else "Assistant"
    text = _WHITESPACE.sub(" ", turn.display_text)[:max_chars]
    return f"- {who}: {text}"


@dataclass
class SessionCompactor:
    """Shrinks sessions whose serialized size exceeds ``max_session_bytes``.

    The last ``2 * context_turns`` turns are kept verbatim. Only the last
    ``summary_bullets`` evicted turns are folded into the summary; anything
    evicted before them is dropped.
    """

    max_session_bytes: int = DEFAULT_MAX_SESSION_BYTES
    context_turns: int = DEFAULT_CONTEXT_TURNS
    summary_bullets: int = DEFAULT_SUMMARY_BULLETS
    summary_max_bytes: int = DEFAULT_SUMMARY_MAX_BYTES

    def needs_compaction(self, session: SessionState) -> bool:
        return session.serialized_size() > self.max_session_bytes

    def compact(self, session: SessionState) -> CompactionReport | None:
        """Compact *session* in place. Returns None when under the ceiling."""
        size_before = session.serialized_size()
        if size_before <= self.max_session_bytes:
            return None

        with trace_compaction(session.server_id):
            keep_count = self.context_turns * 2
            split = max(0, len(session.messages) - keep_count)
            older = session.messages[:split]
            keep = session.messages[split:]

            folded = older[-self.summary_bullets :] if self.summary_bullets > 0 else []
            if folded:
                bullets = "\n".join(render_bullet(t) for t in folded)
                prefix = f"{session.summary}\n" if session.summary else ""
                session.summary = trim_to_bytes(prefix + bullets, self.summary_max_bytes)

            session.messages = list(keep)
            report = CompactionReport(
                size_before=size_before,
                size_after=session.serialized_size(),
                kept=len(keep),
                evicted=len(older),
                summarized=len(folded),
            )

        logger.info(
            "session:compacted -> %s (size was ~%dKB, evicted %d, summarized %d)",
            session.server_id,
            round(size_before / 1024),
            report.evicted,
            report.summarized,
        )
        return report
