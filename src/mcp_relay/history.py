"""Session manager: append, compact, persist and build context per backend."""

from __future__ import annotations

import logging
from pathlib import Path

from .compactor import CompactionReport, SessionCompactor
from .config import RelaySettings
from .context_window import ContextPart, ContextWindowManager
from .session import SessionState, SessionStore, Turn, TurnRole

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the in-memory copy of every session it has loaded.

    Mutations for one server id are expected to be sequential; the store
    sees whole-session writes, last write wins.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        compactor: SessionCompactor | None = None,
        window: ContextWindowManager | None = None,
    ) -> None:
        self._store = store
        self._compactor = compactor or SessionCompactor()
        self._window = window or ContextWindowManager(
            context_turns=self._compactor.context_turns
        )
        self._sessions: dict[str, SessionState] = {}

    @classmethod
    def from_settings(cls, store: SessionStore, settings: RelaySettings) -> SessionManager:
        return cls(
            store,
            compactor=SessionCompactor(
                max_session_bytes=settings.max_session_bytes,
                context_turns=settings.context_turns,
                summary_bullets=settings.summary_bullets,
                summary_max_bytes=settings.summary_max_bytes,
            ),
            window=ContextWindowManager(
                budget_bytes=settings.context_budget_bytes,
                context_turns=settings.context_turns,
            ),
        )

    @property
    def context_turns(self) -> int:
        return self._window.context_turns

    def load(self, server_id: str) -> SessionState:
        session = self._sessions.get(server_id)
        if session is None:
            session = self._store.load(server_id)
            self._sessions[server_id] = session
        return session

    def save(self, server_id: str) -> None:
        self._store.save(self.load(server_id))

    def reset(self, server_id: str) -> SessionState:
        session = SessionState(server_id=server_id)
        self._sessions[server_id] = session
        self._store.save(session)
        logger.info("session:reset -> %s", server_id)
        return session

    def export(self, server_id: str, out_path: str | Path | None = None) -> str:
        return self._store.export(self.load(server_id), out_path)

    def append(self, server_id: str, turn: Turn) -> CompactionReport | None:
        """Append one turn, compact if needed, persist."""
        session = self.load(server_id)
        session.append(turn)
        report = self._compactor.compact(session)
        self._store.save(session)
        return report

    def record_exchange(
        self,
        server_id: str,
        host_text: str,
        server_text: str,
        *,
        host_preview: str | None = None,
        server_preview: str | None = None,
    ) -> tuple[Turn, Turn]:
        """Log a request/response pair as a host turn followed by a server turn."""
        session = self.load(server_id)
        host = Turn(role=TurnRole.HOST, text=host_text, preview=host_preview, server_id=server_id)
        session.append(host)
        self._store.save(session)

        server = Turn(
            role=TurnRole.SERVER, text=server_text, preview=server_preview, server_id=server_id
        )
        session.append(server)
        self._compactor.compact(session)
        self._store.save(session)
        return host, server

    def build_context(self, server_id: str) -> list[ContextPart]:
        return self._window.build(self.load(server_id))
