"""Tests for transient-error classification and the retry policy."""

from __future__ import annotations

import pytest

from mcp_relay.config import RelaySettings
from mcp_relay.errors import McpError, RpcTimeout, TransientProtocolError
from mcp_relay.retry import RetryPolicy, is_transient


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class TestIsTransient:
    def test_not_initialized_message(self) -> None:
        exc = McpError(-32002, "Received request before initialization was complete")
        assert is_transient(exc)

    def test_invalid_params_code(self) -> None:
        assert is_transient(McpError(-32602, "Invalid params"))

    def test_transient_subclass(self) -> None:
        assert is_transient(TransientProtocolError(-1, "whatever"))

    def test_plain_errors_are_not_transient(self) -> None:
        assert not is_transient(McpError(-32601, "Unknown tool: x"))
        assert not is_transient(RpcTimeout("tools/call", 15))
        assert not is_transient(ValueError("nope"))

    def test_message_only_match(self) -> None:
        assert is_transient(RuntimeError("server said: BEFORE INITIALIZATION WAS COMPLETE"))


class TestSchedule:
    def test_default_delays_double_and_cap(self) -> None:
        assert RetryPolicy().delays() == [0.25, 0.5, 1.0, 1.5, 1.5]

    def test_single_try_has_no_delay(self) -> None:
        assert RetryPolicy(tries=1).delays() == []

    def test_from_settings(self) -> None:
        settings = RelaySettings(retry_tries=3, retry_initial_delay=0.1, retry_max_delay=0.15)
        policy = RetryPolicy.from_settings(settings)
        assert policy.delays() == [0.1, 0.15]


@pytest.mark.asyncio
async def test_transient_failures_use_exactly_tries_attempts() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(sleep=sleep)
    attempts = 0

    async def call() -> str:
        nonlocal attempts
        attempts += 1
        raise McpError(-32602, "Invalid params")

    with pytest.raises(McpError):
        await policy.run(call)

    assert attempts == 6
    assert sleep.calls == [0.25, 0.5, 1.0, 1.5, 1.5]


@pytest.mark.asyncio
async def test_success_after_transient_failures() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(sleep=sleep)
    attempts = 0

    async def call() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise TransientProtocolError(-32002, "before initialization was complete")
        return "ok"

    assert await policy.run(call) == "ok"
    assert attempts == 3
    assert sleep.calls == [0.25, 0.5]


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(sleep=sleep)
    attempts = 0

    async def call() -> str:
        nonlocal attempts
        attempts += 1
        raise McpError(-32601, "Unknown tool: x")

    with pytest.raises(McpError, match="Unknown tool"):
        await policy.run(call)
    assert attempts == 1
    assert sleep.calls == []
