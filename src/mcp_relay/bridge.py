"""Tool gateway: routes list/call requests to stdio workers or HTTP backends."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any

import requests
from pydantic import BaseModel

from .config import BackendConfig, BackendDescriptor, RelaySettings
from .discovery import ToolDiscovery
from .errors import HttpBackendError
from .retry import RetryPolicy
from .supervisor import BackendState, ProcessSupervisor, WorkerProcess
from .telemetry import trace_rpc_call, trace_tool_call

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_TIMEOUT = 30.0


class ToolResult(BaseModel):
    """Outcome of a boundary call. Failures carry ``error`` and ``details``."""

    ok: bool
    result: Any = None
    error: str | None = None
    details: str | None = None
    variant: str | None = None

    def to_payload(self) -> Any:
        """Body for an outer transport: the raw result, or the error object."""
        if self.ok:
            return self.result
        return self.model_dump(include={"error", "details", "variant"}, exclude_none=True)


class ToolGateway:
    """Discover-then-execute access to every configured backend.

    Stdio backends go through the supervisor (spawn + initialize on first
    use), the retry policy and, for listing, the discovery fallback chain.
    HTTP backends are forwarded with ``requests``.
    """

    def __init__(
        self,
        config: BackendConfig,
        settings: RelaySettings | None = None,
        *,
        supervisor: ProcessSupervisor | None = None,
        retry: RetryPolicy | None = None,
        http_timeout: float = _DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._config = config
        self._settings = settings or RelaySettings()
        self.supervisor = supervisor or ProcessSupervisor(config, self._settings)
        self._retry = retry or RetryPolicy.from_settings(self._settings)
        self._http_timeout = http_timeout
        self._discoveries: dict[str, ToolDiscovery] = {}

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def servers(self) -> list[BackendState]:
        return self.supervisor.inventory()

    def last_variant(self, server_id: str) -> str | None:
        discovery = self._discoveries.get(server_id)
        return discovery.last_variant if discovery else None

    # ------------------------------------------------------------------
    # Operations (raise on failure)
    # ------------------------------------------------------------------

    async def list_tools(self, server_id: str) -> Any:
        """Return the backend's ``tools/list`` result."""
        desc = self._config.get(server_id)
        if desc.transport == "http":
            return await self._forward(desc, "/tools", {})

        discovery = self._discoveries.setdefault(server_id, ToolDiscovery(self._retry))
        discovery.last_variant = None
        # Boot once; variants and their retries only talk to the ready worker.
        worker = await self.supervisor.ensure_ready(server_id)
        return await discovery.list_tools(partial(self._send, server_id, worker))

    async def call_tool(
        self,
        server_id: str,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> Any:
        """Invoke ``tools/call`` on the backend and return its raw result."""
        desc = self._config.get(server_id)
        params = {"name": name, "arguments": arguments or {}}
        with trace_tool_call(server_id, name):
            if desc.transport == "http":
                return await self._forward(desc, "/call", params)
            worker = await self.supervisor.ensure_ready(server_id)
            return await self._retry.run(
                partial(self._send, server_id, worker, "tools/call", params),
                label=f"tools/call {name}",
            )

    async def rpc(self, server_id: str, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one request, booting the worker first if it is not ready."""
        worker = await self.supervisor.ensure_ready(server_id)
        return await self._send(server_id, worker, method, params)

    async def _send(
        self,
        server_id: str,
        worker: WorkerProcess,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        assert worker.channel is not None  # noqa: S101
        with trace_rpc_call(server_id, method):
            return await worker.channel.send(method, params)

    # ------------------------------------------------------------------
    # Boundary entry points (never raise)
    # ------------------------------------------------------------------

    async def handle_list_tools(self, server_id: str) -> ToolResult:
        try:
            result = await self.list_tools(server_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("tools/list on %s failed: %s", server_id, exc)
            return ToolResult(
                ok=False,
                error="tools/list failed",
                details=str(exc),
                variant=self._variant_label(server_id),
            )
        return ToolResult(ok=True, result=result, variant=self._variant_label(server_id))

    async def handle_call_tool(self, server_id: str, payload: dict[str, Any] | None) -> ToolResult:
        payload = payload or {}
        name = payload.get("name")
        if not name:
            return ToolResult(ok=False, error="missing name")
        arguments = dict(payload.get("arguments") or {})
        try:
            result = await self.call_tool(server_id, name, arguments)
        except Exception as exc:  # noqa: BLE001
            logger.warning("tools/call %s on %s failed: %s", name, server_id, exc)
            return ToolResult(ok=False, error="tools/call failed", details=str(exc))
        return ToolResult(ok=True, result=result)

    def _variant_label(self, server_id: str) -> str | None:
        if server_id in self._config and self._config.get(server_id).transport == "http":
            return "remote-http {}"
        return self.last_variant(server_id)

    # ------------------------------------------------------------------
    # HTTP forwarding
    # ------------------------------------------------------------------

    async def _forward(self, desc: BackendDescriptor, path: str, body: dict[str, Any]) -> Any:
        url = desc.base_url() + path
        return await asyncio.to_thread(self._post_json, url, body)

    def _post_json(self, url: str, body: dict[str, Any]) -> Any:
        try:
            resp = requests.post(url, json=body, timeout=self._http_timeout)
        except requests.RequestException as exc:
            raise HttpBackendError(None, str(exc)) from exc
        if not resp.ok:
            raise HttpBackendError(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as exc:
            raise HttpBackendError(resp.status_code, f"invalid JSON body: {exc}") from exc

    # ------------------------------------------------------------------
    # Async context manager
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self.supervisor.shutdown()

    async def __aenter__(self) -> ToolGateway:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

