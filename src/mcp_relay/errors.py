"""Error taxonomy for the relay."""

from __future__ import annotations

import re
from typing import Any

# JSON-RPC "invalid params". Some servers answer it while still booting.
INVALID_PARAMS_CODE = -32602

# Message of servers rejecting calls that race the initialize handshake.
NOT_INITIALIZED_PATTERN = re.compile(r"before initialization was complete", re.IGNORECASE)


class RelayError(Exception):
    """Base class for every error raised by mcp-relay."""


class ConfigError(RelayError):
    """Raised when no usable backend descriptor exists for an id."""


class TransportUnsupported(RelayError):
    """Raised when a descriptor's transport cannot be served by the caller."""

    def __init__(self, server_id: str, transport: str) -> None:
        self.server_id = server_id
        self.transport = transport
        super().__init__(f"server '{server_id}' uses transport '{transport}', expected stdio")


class WorkerSpawnError(RelayError):
    """Raised when the worker executable could not be started."""


class ProcessExited(RelayError):
    """Raised for every in-flight call when a worker process exits."""

    def __init__(self, server_id: str, code: int | None, signal: int | None = None) -> None:
        self.server_id = server_id
        self.code = code
        self.signal = signal
        super().__init__(f"MCP process '{server_id}' exited with code {code}")


class ChannelClosed(RelayError):
    """Raised when a request cannot be written to a worker's stdin."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"[{channel}] write failed: {reason}")


class RpcTimeout(RelayError):
    """Raised when a request gets no response within its timeout."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"RPC timeout: {method} ({timeout}s)")


class McpError(RelayError):
    """Raised when the MCP server returns a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"MCP error {code}: {message}")


class TransientProtocolError(McpError):
    """A JSON-RPC error that matches a known start-up race signature."""


class MalformedFrame(RelayError):
    """A stdout line that is not a JSON-RPC object. Logged, never propagated."""

    def __init__(self, line: str) -> None:
        self.line = line
        super().__init__(f"malformed frame: {line[:200]!r}")


class HttpBackendError(RelayError):
    """Raised when an HTTP-forwarded backend answers with a non-2xx status."""

    def __init__(self, status: int | None, details: str) -> None:
        self.status = status
        self.details = details
        super().__init__(f"HTTP backend error {status}: {details[:200]}")


class LLMError(RelayError):
    """Raised when the remote text-generation API fails."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        details: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.status = status
        self.details = details
        self.retry_after = retry_after
        super().__init__(message)
