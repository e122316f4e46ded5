"""Newline-delimited JSON-RPC 2.0 framing."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import MalformedFrame

JSONRPC_VERSION = "2.0"


class RpcMessage(BaseModel):
    """A single JSON-RPC 2.0 message (request, notification or response)."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str = JSONRPC_VERSION
    id: int | str | None = None
    method: str | None = None
    params: dict[str, Any] | list[Any] | None = None
    result: Any = None
    error: dict[str, Any] | str | None = None

    @property
    def is_response(self) -> bool:
        fields = self.model_fields_set
        return self.id is not None and self.method is None and (
            "result" in fields or "error" in fields
        )

    def to_line(self) -> bytes:
        """Serialize to one newline-terminated UTF-8 line.

        Only explicitly set fields are written, so a request built without
        ``params`` carries no ``params`` key.
        """
        payload = self.model_dump(exclude_unset=True)
        payload.setdefault("jsonrpc", JSONRPC_VERSION)
        return (json.dumps(payload, separators=(",", ":")) + "\n").encode()


def make_request(request_id: int, method: str, params: dict[str, Any] | None) -> RpcMessage:
    if params is None:
        return RpcMessage(jsonrpc=JSONRPC_VERSION, id=request_id, method=method)
    return RpcMessage(jsonrpc=JSONRPC_VERSION, id=request_id, method=method, params=params)


def make_notification(method: str, params: dict[str, Any] | None) -> RpcMessage:
    if params is None:
        return RpcMessage(jsonrpc=JSONRPC_VERSION, method=method)
    return RpcMessage(jsonrpc=JSONRPC_VERSION, method=method, params=params)


def parse_line(line: str) -> RpcMessage:
    """Parse one stripped line, raising :class:`MalformedFrame` on garbage."""
    try:
        raw = json.loads(line)
    except ValueError as exc:
        raise MalformedFrame(line) from exc
    if not isinstance(raw, dict):
        raise MalformedFrame(line)
    try:
        return RpcMessage.model_validate(raw)
    except ValidationError as exc:
        raise MalformedFrame(line) from exc


class LineDecoder:
    """Incremental decoder turning arbitrarily split stdout chunks into lines.

    Bytes are buffered until a ``\\n`` arrives, so a multi-byte UTF-8
    character split across two reads is decoded intact.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Append *chunk* and return every complete, non-blank line."""
        self._buffer.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
        return lines

    def reset(self) -> None:
        self._buffer.clear()
