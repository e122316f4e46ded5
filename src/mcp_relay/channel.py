"""JSON-RPC channel over a worker's stdio pipes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import (
    INVALID_PARAMS_CODE,
    NOT_INITIALIZED_PATTERN,
    ChannelClosed,
    MalformedFrame,
    McpError,
    RelayError,
    RpcTimeout,
    TransientProtocolError,
)
from .framing import LineDecoder, RpcMessage, make_notification, make_request, parse_line

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT = 15.0


class LineWriter(Protocol):
    """The subset of :class:`asyncio.StreamWriter` used by the channel."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


@dataclass
class PendingRequest:
    """An outstanding request awaiting its response. Settles exactly once."""

    request_id: int
    method: str
    future: asyncio.Future[Any]
    created_at: float = field(default_factory=time.monotonic)
    settled: bool = False
    timer: asyncio.TimerHandle | None = None

    def resolve(self, result: Any) -> bool:
        if not self._mark_settled():
            return False
        if not self.future.done():
            self.future.set_result(result)
        return True

    def reject(self, exc: BaseException) -> bool:
        if not self._mark_settled():
            return False
        if not self.future.done():
            self.future.set_exception(exc)
        return True

    def abandon(self) -> bool:
        """Settle without a value (the awaiting caller went away)."""
        return self._mark_settled()

    def _mark_settled(self) -> bool:
        if self.settled:
            return False
        self.settled = True
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        return True


def error_from_payload(error: dict[str, Any] | str) -> McpError:
    """Build the exception for a JSON-RPC ``error`` member."""
    if isinstance(error, str):
        code, message, data = -32603, error, None
    else:
        code = error.get("code", -1)
        message = error.get("message", "unknown error")
        data = error.get("data")
    if code == INVALID_PARAMS_CODE or NOT_INITIALIZED_PATTERN.search(str(message)):
        return TransientProtocolError(code, message, data)
    return McpError(code, message, data)


class RpcChannel:
    """Correlates requests and responses on one worker's stdio.

    Any number of requests may be in flight; responses are matched purely
    by ``id`` through the pending table. Incoming bytes are pushed with
    :meth:`feed` by whoever owns the worker's stdout.
    """

    def __init__(
        self,
        writer: LineWriter,
        *,
        name: str = "mcp",
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ) -> None:
        self._writer = writer
        self._name = name
        self._timeout = timeout
        self._decoder = LineDecoder()
        self._pending: dict[int, PendingRequest] = {}
        self._next_id = 0
        self._closed: RelayError | None = None
        self.discarded_responses = 0
        self.malformed_frames = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed is not None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its ``result``.

        ``params=None`` sends the request without a ``params`` member.

        Raises:
            McpError: The server answered with a JSON-RPC error.
            RpcTimeout: No response arrived within the timeout.
            ProcessExited: The worker died while the call was in flight.
        """
        if self._closed is not None:
            raise self._closed

        self._next_id += 1
        request_id = self._next_id
        loop = asyncio.get_running_loop()
        pending = PendingRequest(request_id=request_id, method=method, future=loop.create_future())
        wait = self._timeout if timeout is None else timeout
        pending.timer = loop.call_later(wait, self._expire, request_id, wait)
        self._pending[request_id] = pending

        try:
            await self._write(make_request(request_id, method, params).to_line())
        except (BrokenPipeError, ConnectionResetError, OSError) as exc:
            self._pending.pop(request_id, None)
            closed = ChannelClosed(self._name, str(exc) or type(exc).__name__)
            closed.__cause__ = exc
            pending.reject(closed)

        try:
            return await pending.future
        finally:
            if pending.abandon():
                self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Fire-and-forget notification; write failures are only logged."""
        try:
            await self._write(make_notification(method, params).to_line())
        except (BrokenPipeError, ConnectionResetError, OSError, RuntimeError) as exc:
            logger.debug("[%s] notification %s not delivered: %s", self._name, method, exc)

    async def _write(self, line: bytes) -> None:
        self._writer.write(line)
        await self._writer.drain()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> None:
        """Consume a raw stdout chunk; may settle any number of requests."""
        for line in self._decoder.feed(chunk):
            try:
                message = parse_line(line)
            except MalformedFrame:
                self.malformed_frames += 1
                logger.warning("[%s] stdout(non-json): %s", self._name, line[:500])
                continue
            self._dispatch(message)

    def _dispatch(self, message: RpcMessage) -> None:
        if message.id is None:
            logger.debug("[%s] notification from server: %s", self._name, message.method)
            return
        if message.method is not None:
            logger.debug("[%s] ignoring server request %s", self._name, message.method)
            return

        pending = self._pending.pop(message.id, None) if isinstance(message.id, int) else None
        if pending is None:
            self.discarded_responses += 1
            logger.debug("[%s] discarding response for unknown id %r", self._name, message.id)
            return

        if message.error is not None:
            pending.reject(error_from_payload(message.error))
        else:
            pending.resolve(message.result if message.result is not None else {})

    def _expire(self, request_id: int, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        logger.warning("[%s] request %d (%s) timed out", self._name, request_id, pending.method)
        pending.reject(RpcTimeout(pending.method, timeout))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def fail_all(self, exc: RelayError) -> int:
        """Reject every outstanding request with *exc* and refuse new sends.

        Returns the number of requests rejected.
        """
        self._closed = exc
        rejected = 0
        pending_requests = list(self._pending.values())
        self._pending.clear()
        for pending in pending_requests:
            if pending.reject(exc):
                rejected += 1
        self._decoder.reset()
        return rejected
