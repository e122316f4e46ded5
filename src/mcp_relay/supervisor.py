"""Process supervisor: one live MCP worker process per backend id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from .channel import DEFAULT_RPC_TIMEOUT, RpcChannel
from .config import BackendConfig, BackendDescriptor, RelaySettings
from .errors import ProcessExited, RelayError, TransportUnsupported, WorkerSpawnError

logger = logging.getLogger(__name__)

# MCP protocol version announced during handshake.
MCP_PROTOCOL_VERSION = "2024-11-05"

CLIENT_INFO: dict[str, str] = {"name": "mcp-relay", "version": "0.1.0"}

DEFAULT_SETTLE_DELAY = 0.8

_STOP_GRACE_SECONDS = 5.0
_READ_CHUNK = 64 * 1024


class WorkerStatus(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"
    ERROR = "error"


# Every path to READY goes through STARTING.
_TRANSITIONS: dict[WorkerStatus, list[WorkerStatus]] = {
    WorkerStatus.STOPPED: [WorkerStatus.STARTING],
    WorkerStatus.STARTING: [WorkerStatus.READY, WorkerStatus.ERROR, WorkerStatus.STOPPED],
    WorkerStatus.READY: [WorkerStatus.STOPPED, WorkerStatus.ERROR],
    WorkerStatus.ERROR: [WorkerStatus.STOPPED, WorkerStatus.STARTING],
}


def can_transition(current: WorkerStatus, target: WorkerStatus) -> bool:
    return target in _TRANSITIONS.get(current, [])


class BackendState(BaseModel):
    """Inventory entry for one configured backend."""

    id: str
    label: str
    transport: str
    status: WorkerStatus
    url: str | None = None


class WorkerProcess:
    """A spawned MCP server process plus the RPC channel on its pipes."""

    def __init__(
        self,
        descriptor: BackendDescriptor,
        *,
        rpc_timeout: float = DEFAULT_RPC_TIMEOUT,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        on_exit: Callable[[WorkerProcess], None] | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.server_id = descriptor.id
        self.status = WorkerStatus.STOPPED
        self.server_info: dict[str, Any] = {}
        self.exit_code: int | None = None
        self.process: asyncio.subprocess.Process | None = None
        self.channel: RpcChannel | None = None
        self._rpc_timeout = rpc_timeout
        self._settle_delay = settle_delay
        self._on_exit = on_exit
        self._start_task: asyncio.Task[None] | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"WorkerProcess(id={self.server_id!r}, status={self.status.value})"

    @property
    def ready(self) -> bool:
        return self.status is WorkerStatus.READY

    def _transition(self, target: WorkerStatus) -> None:
        if not can_transition(self.status, target):
            raise ValueError(f"Invalid transition: {self.status} -> {target}")
        logger.debug("[mcp:%s] %s -> %s", self.server_id, self.status, target)
        self.status = target

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_started(self) -> None:
        """Spawn the process once; concurrent callers share the spawn."""
        if self._start_task is None:
            self._start_task = asyncio.ensure_future(self._spawn())
        await asyncio.shield(self._start_task)

    async def _spawn(self) -> None:
        desc = self.descriptor
        self._transition(WorkerStatus.STARTING)
        if not desc.cmd:
            self._transition(WorkerStatus.ERROR)
            msg = f"server '{self.server_id}' has no cmd"
            raise WorkerSpawnError(msg)

        logger.info("[mcp:%s] spawn: %s %s", self.server_id, desc.cmd, " ".join(desc.args))
        try:
            self.process = await asyncio.create_subprocess_exec(
                desc.cmd,
                *desc.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._transition(WorkerStatus.ERROR)
            msg = f"cannot spawn '{desc.cmd}' for server '{self.server_id}': {exc}"
            raise WorkerSpawnError(msg) from exc

        assert self.process.stdin is not None  # noqa: S101
        self.channel = RpcChannel(
            self.process.stdin,
            name=f"mcp:{self.server_id}",
            timeout=self._rpc_timeout,
        )
        self._stdout_task = asyncio.create_task(self._pump_stdout())
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

    async def ensure_ready(self) -> None:
        """Run the initialize handshake once; later callers await the same one."""
        await self.ensure_started()
        if self.ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self.initialize())
        await asyncio.shield(self._init_task)

    async def initialize(self) -> None:
        """Bring the worker from ``starting`` to ``ready``.

        Sends ``initialize``, then the ``initialized`` notification plus its
        legacy ``notifications/initialized`` alias, then waits the settle
        delay. On failure the worker is marked ``error`` and stopped.
        """
        channel = self._require_channel()
        try:
            result = await channel.send(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "clientInfo": CLIENT_INFO,
                    "capabilities": {"experimental": {}},
                },
            )
            self.server_info = result if isinstance(result, dict) else {}
            await channel.notify("initialized", {})
            await channel.notify("notifications/initialized", {})
            await asyncio.sleep(self._settle_delay)
            if self.status is not WorkerStatus.STARTING:
                raise ProcessExited(self.server_id, self.exit_code)
        except (RelayError, OSError) as exc:
            if self.status is WorkerStatus.STARTING:
                self._transition(WorkerStatus.ERROR)
            logger.error("[mcp:%s] initialization failed: %s", self.server_id, exc)
            await self.stop()
            raise

        self._transition(WorkerStatus.READY)
        logger.info(
            "[mcp:%s] MCP server initialized: %s",
            self.server_id,
            self.server_info.get("serverInfo", {}),
        )

    async def stop(self) -> None:
        """Stop the worker process gracefully, killing it after a grace period."""
        proc = self.process
        if proc is None or proc.returncode is not None:
            await self._join_exit()
            return

        if proc.stdin is not None:
            proc.stdin.close()
            # Ignore errors from closing stdin when process already exited.
            try:
                await proc.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError, OSError):
                pass

        try:
            await asyncio.wait_for(proc.wait(), timeout=_STOP_GRACE_SECONDS)
        except TimeoutError:
            logger.warning("[mcp:%s] did not exit after stdin close, killing", self.server_id)
            proc.kill()
            await proc.wait()

        await self._join_exit()

    async def _join_exit(self) -> None:
        task = self._exit_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Pipe pumps
    # ------------------------------------------------------------------

    async def _pump_stdout(self) -> None:
        assert self.process is not None and self.process.stdout is not None  # noqa: S101
        channel = self._require_channel()
        while True:
            chunk = await self.process.stdout.read(_READ_CHUNK)
            if not chunk:
                return
            channel.feed(chunk)

    async def _drain_stderr(self) -> None:
        assert self.process is not None and self.process.stderr is not None  # noqa: S101
        while True:
            raw = await self.process.stderr.readline()
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").strip()
            if text:
                logger.warning("[mcp:%s] STDERR: %s", self.server_id, text)

    async def _watch_exit(self) -> None:
        assert self.process is not None  # noqa: S101
        code = await self.process.wait()
        # Let responses already written before exit reach the channel.
        if self._stdout_task is not None:
            await asyncio.wait({self._stdout_task}, timeout=1.0)
        signal = -code if code is not None and code < 0 else None
        self._handle_exit(code, signal)

    def _handle_exit(self, code: int | None, signal: int | None) -> None:
        self.exit_code = code
        logger.error(
            "[mcp:%s] EXIT code=%s signal=%s",
            self.server_id,
            code,
            signal if signal is not None else "none",
        )
        if self.status is not WorkerStatus.ERROR:
            self._transition(WorkerStatus.STOPPED)
        if self.channel is not None:
            rejected = self.channel.fail_all(ProcessExited(self.server_id, code, signal))
            if rejected:
                logger.warning("[mcp:%s] rejected %d in-flight request(s)", self.server_id, rejected)
        if self._on_exit is not None:
            self._on_exit(self)

    def _require_channel(self) -> RpcChannel:
        if self.channel is None:
            msg = f"MCP process '{self.server_id}' is not running"
            raise WorkerSpawnError(msg)
        return self.channel


class ProcessSupervisor:
    """Registry of worker processes keyed by backend id.

    At most one live worker exists per id. A worker that exits is removed
    from the registry, so the next :meth:`acquire` spawns a fresh one.
    """

    def __init__(
        self,
        config: BackendConfig,
        settings: RelaySettings | None = None,
    ) -> None:
        self._config = config
        self._settings = settings or RelaySettings()
        self._workers: dict[str, WorkerProcess] = {}
        self._last_status: dict[str, WorkerStatus] = {}

    @property
    def config(self) -> BackendConfig:
        return self._config

    async def acquire(self, server_id: str) -> WorkerProcess:
        """Return the live worker for *server_id*, spawning it if needed.

        Raises:
            ConfigError: No descriptor for *server_id*.
            TransportUnsupported: The descriptor is not a stdio backend.
            WorkerSpawnError: The executable could not be started.
        """
        desc = self._config.get(server_id)
        if desc.transport != "stdio":
            raise TransportUnsupported(server_id, desc.transport)

        worker = self._workers.get(server_id)
        if worker is None:
            worker = WorkerProcess(
                desc,
                rpc_timeout=self._settings.rpc_timeout,
                settle_delay=self._settings.settle_delay,
                on_exit=self._on_worker_exit,
            )
            self._workers[server_id] = worker

        try:
            await worker.ensure_started()
        except WorkerSpawnError:
            self._forget(worker)
            raise
        return worker

    async def ensure_ready(self, server_id: str) -> WorkerProcess:
        """Acquire the worker and complete its initialization handshake."""
        worker = await self.acquire(server_id)
        await worker.ensure_ready()
        return worker

    def get(self, server_id: str) -> WorkerProcess | None:
        return self._workers.get(server_id)

    def status(self, server_id: str) -> WorkerStatus:
        worker = self._workers.get(server_id)
        if worker is not None:
            return worker.status
        return self._last_status.get(server_id, WorkerStatus.STOPPED)

    def inventory(self) -> list[BackendState]:
        return [
            BackendState(
                id=desc.id,
                label=desc.display_name,
                transport=desc.transport,
                status=self.status(desc.id),
                url=desc.url,
            )
            for desc in self._config
        ]

    async def stop(self, server_id: str) -> None:
        worker = self._workers.get(server_id)
        if worker is not None:
            await worker.stop()

    async def shutdown(self) -> None:
        workers = list(self._workers.values())
        if workers:
            await asyncio.gather(*(w.stop() for w in workers), return_exceptions=True)

    def _on_worker_exit(self, worker: WorkerProcess) -> None:
        self._forget(worker)

    def _forget(self, worker: WorkerProcess) -> None:
        self._last_status[worker.server_id] = worker.status
        if self._workers.get(worker.server_id) is worker:
            del self._workers[worker.server_id]
