"""Shared fixtures: an inline mock MCP server and fast relay settings."""

from __future__ import annotations

import sys
import textwrap
from typing import Any

import pytest

from mcp_relay.config import BackendConfig, BackendDescriptor, RelaySettings

# A tiny Python script that acts as an MCP server over stdio.
#
# Flags:
#   --not-ready N   answer the first N tools/list calls with the
#                   "before initialization was complete" error
#   --strict-list   reject tools/list carrying params with -32602
#   --fail-init     answer initialize with an error
#   --noisy         print a non-JSON line and some stderr before answering
MOCK_SERVER_SCRIPT = textwrap.dedent("""\
    import json, sys

    args = sys.argv[1:]
    not_ready = int(args[args.index("--not-ready") + 1]) if "--not-ready" in args else 0
    strict_list = "--strict-list" in args
    fail_init = "--fail-init" in args
    noisy = "--noisy" in args
    notifications = []

    def respond(obj):
        sys.stdout.write(json.dumps(obj, separators=(",", ":")) + "\\n")
        sys.stdout.flush()

    def error(msg_id, code, message):
        respond({"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}})

    def text_result(msg_id, text):
        respond({"jsonrpc": "2.0", "id": msg_id,
                 "result": {"content": [{"type": "text", "text": text}]}})

    for raw in sys.stdin:
        msg = json.loads(raw)
        method = msg.get("method", "")
        msg_id = msg.get("id")

        if msg_id is None:
            notifications.append(method)
            continue

        if method == "initialize":
            if fail_init:
                error(msg_id, -32603, "initialize exploded")
                continue
            if noisy:
                sys.stdout.write("starting up, not json\\n")
                sys.stdout.flush()
                sys.stderr.write("mock server booting\\n")
                sys.stderr.flush()
            respond({
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": msg["params"]["protocolVersion"],
                    "serverInfo": {"name": "mock-mcp", "version": "0.0.1"},
                    "capabilities": {"tools": {}},
                    "clientInfo": msg["params"]["clientInfo"],
                },
            })
        elif method == "tools/list":
            if not_ready > 0:
                not_ready -= 1
                error(msg_id, -32002, "Received request before initialization was complete")
                continue
            if strict_list and "params" in msg:
                error(msg_id, -32602, "Invalid params")
                continue
            respond({
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {"tools": [
                    {"name": "echo", "inputSchema": {"type": "object"}},
                    {"name": "crash", "inputSchema": {"type": "object"}},
                    {"name": "hang", "inputSchema": {"type": "object"}},
                    {"name": "notifications", "inputSchema": {"type": "object"}},
                ]},
            })
        elif method == "tools/call":
            name = msg["params"]["name"]
            arguments = msg["params"]["arguments"]
            if name == "echo":
                text_result(msg_id, arguments.get("input", ""))
            elif name == "crash":
                sys.exit(3)
            elif name == "hang":
                continue
            elif name == "notifications":
                text_result(msg_id, json.dumps(notifications))
            else:
                error(msg_id, -32601, f"Unknown tool: {name}")
        else:
            error(msg_id, -32601, f"Unknown method: {method}")
""")


def mock_descriptor(server_id: str = "mock", *flags: str) -> BackendDescriptor:
    return BackendDescriptor(
        id=server_id,
        label=f"Mock ({server_id})",
        transport="stdio",
        cmd=sys.executable,
        args=["-c", MOCK_SERVER_SCRIPT, *flags],
    )


def mock_config(*flags: str, extra: list[dict[str, Any]] | None = None) -> BackendConfig:
    descriptors = [mock_descriptor("mock", *flags)]
    descriptors += [BackendDescriptor.model_validate(item) for item in extra or []]
    return BackendConfig(descriptors)


@pytest.fixture
def fast_settings() -> RelaySettings:
    return RelaySettings(
        rpc_timeout=5.0,
        settle_delay=0.01,
        retry_tries=3,
        retry_initial_delay=0.01,
        retry_max_delay=0.02,
    )


@pytest.fixture
def make_config():  # noqa: ANN201
    return mock_config
