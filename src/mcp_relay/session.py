"""Per-backend session history and its persistence."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class TurnRole(StrEnum):
    """Who produced a turn. ``system`` turns never reach the context window."""

    HOST = "host"
    SERVER = "server"
    SYSTEM = "system"


class Turn(BaseModel):
    """One logged message within a session."""

    role: TurnRole
    ts: int = Field(default_factory=_now_ms)
    text: str = ""
    preview: str | None = None
    server_id: str | None = None

    @property
    def display_text(self) -> str:
        """Short form used for context and summaries: preview, else full text."""
        return self.preview if self.preview is not None else self.text


class SessionState(BaseModel):
    """Conversation history for one backend id.

    ``summary`` stands for everything older than ``messages[0]``.
    """

    server_id: str
    messages: list[Turn] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)
    summary: str = ""

    def append(self, turn: Turn) -> None:
        # Keep the log time-ordered even if the wall clock steps back.
        if self.messages and turn.ts < self.messages[-1].ts:
            turn = turn.model_copy(update={"ts": self.messages[-1].ts})
        self.messages.append(turn)

    def serialized_size(self) -> int:
        """UTF-8 size of the session as persisted."""
        return len(self.model_dump_json().encode("utf-8"))


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class SessionStore(ABC):
    """Where sessions live between runs. Writes are last-write-wins."""

    @abstractmethod
    def load(self, server_id: str) -> SessionState:
        """Return the stored session, or a fresh one."""

    @abstractmethod
    def save(self, session: SessionState) -> None:
        """Persist *session*, replacing any previous copy."""

    @abstractmethod
    def export(self, session: SessionState, out_path: str | Path | None = None) -> str:
        """Write a standalone copy of *session* and return where it went."""


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def load(self, server_id: str) -> SessionState:
        raw = self._data.get(server_id)
        if raw is None:
            return SessionState(server_id=server_id)
        return SessionState.model_validate_json(raw)

    def save(self, session: SessionState) -> None:
        self._data[session.server_id] = session.model_dump_json()

    def export(self, session: SessionState, out_path: str | Path | None = None) -> str:
        self.save(session)
        return f"memory://session-{session.server_id}"


class JsonFileSessionStore(SessionStore):
    """One ``session-<id>.json`` file per backend under *directory*."""

    def __init__(self, directory: str | Path = "sessions") -> None:
        self._dir = Path(directory)

    def path_for(self, server_id: str) -> Path:
        return self._dir / f"session-{server_id}.json"

    def load(self, server_id: str) -> SessionState:
        path = self.path_for(server_id)
        if not path.exists():
            return SessionState(server_id=server_id)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            raw["server_id"] = server_id
            return SessionState.model_validate(raw)
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            logger.warning("session file %s unreadable (%s), starting fresh", path, exc)
            return SessionState(server_id=server_id)

    def save(self, session: SessionState) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self.path_for(session.server_id).write_text(
            session.model_dump_json(indent=2), encoding="utf-8"
        )

    def export(self, session: SessionState, out_path: str | Path | None = None) -> str:
        out = Path(out_path) if out_path else Path.cwd() / f"session-{session.server_id}.json"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        return str(out)
