"""Configuration: backend descriptors and relay settings from the environment."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

_DEFAULT_LLM_BASE_URL = "https://api.groq.com/openai/v1"
_DEFAULT_LLM_MODEL = "llama-3.1-8b-instant"


class BackendDescriptor(BaseModel):
    """One configured MCP backend."""

    id: str
    label: str = ""
    transport: Literal["stdio", "http"] = "stdio"
    cmd: str | None = None
    args: list[str] = Field(default_factory=list)
    url: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.id

    def base_url(self) -> str:
        """Return the forwarding url without trailing slashes."""
        if self.transport != "http" or not self.url:
            msg = f"server '{self.id}' is not http or has no url"
            raise ConfigError(msg)
        return self.url.rstrip("/")


# Used when no servers file exists.
_DEFAULT_BACKENDS: list[dict[str, Any]] = [
    {
        "id": "fs",
        "label": "Filesystem (MCP, stdio)",
        "transport": "stdio",
        "cmd": "npx",
        "args": ["-y", "@modelcontextprotocol/server-filesystem", "."],
    }
]


class BackendConfig:
    """Ordered set of backend descriptors, exactly one per id."""

    def __init__(self, descriptors: Iterable[BackendDescriptor]) -> None:
        self._descriptors: dict[str, BackendDescriptor] = {}
        for desc in descriptors:
            if desc.id in self._descriptors:
                msg = f"duplicate backend id '{desc.id}'"
                raise ConfigError(msg)
            self._descriptors[desc.id] = desc

    @classmethod
    def from_list(cls, raw: Iterable[dict[str, Any]]) -> BackendConfig:
        try:
            return cls(BackendDescriptor.model_validate(item) for item in raw)
        except ValidationError as exc:
            raise ConfigError(f"invalid backend descriptor: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | Path) -> BackendConfig:
        """Load a JSON array of descriptors, falling back to the filesystem server."""
        file = Path(path)
        if not file.exists():
            logger.info("no servers file at %s, using default backends", file)
            return cls.from_list(_DEFAULT_BACKENDS)
        try:
            raw = json.loads(file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read servers file {file}: {exc}") from exc
        if not isinstance(raw, list):
            msg = f"servers file {file} must contain a JSON array"
            raise ConfigError(msg)
        return cls.from_list(raw)

    def get(self, server_id: str) -> BackendDescriptor:
        desc = self._descriptors.get(server_id)
        if desc is None:
            msg = f"no config for server '{server_id}'"
            raise ConfigError(msg)
        return desc

    def ids(self) -> list[str]:
        return list(self._descriptors)

    def __iter__(self):  # noqa: ANN204
        return iter(self._descriptors.values())

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


class RelaySettings(BaseModel):
    """Tunables for channels, retries, context building and the LLM client."""

    rpc_timeout: float = 15.0
    settle_delay: float = 0.8
    retry_tries: int = 6
    retry_initial_delay: float = 0.25
    retry_max_delay: float = 1.5
    context_turns: int = 6
    context_budget_bytes: int = 2048
    max_session_bytes: int = 500 * 1024
    summary_bullets: int = 5
    summary_max_bytes: int = 2000
    llm_base_url: str = _DEFAULT_LLM_BASE_URL
    llm_model: str = _DEFAULT_LLM_MODEL
    llm_max_tokens: int = 256
    llm_temperature: float = 0.2
    llm_api_key: str = ""

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> RelaySettings:
        """Build settings from ``MCP_RELAY_*`` variables.

        The LLM fields also honour ``GROQ_API_KEY``, ``GROQ_MODEL``,
        ``GROQ_MAX_TOKENS`` and ``GROQ_TEMPERATURE``.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"MCP_RELAY_{name.upper()}")
            if raw is not None and raw.strip():
                values[name] = raw.strip()

        groq_fallbacks = {
            "llm_api_key": "GROQ_API_KEY",
            "llm_model": "GROQ_MODEL",
            "llm_max_tokens": "GROQ_MAX_TOKENS",
            "llm_temperature": "GROQ_TEMPERATURE",
        }
        for field, var in groq_fallbacks.items():
            if field not in values and env.get(var, "").strip():
                values[field] = env[var].strip()

        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(f"invalid relay settings: {exc}") from exc
