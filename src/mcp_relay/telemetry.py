"""Tracing of relay traffic with OpenTelemetry.

Span names:

* ``mcp/rpc``: one request written to a worker's stdin.
* ``mcp/call``: one tool invocation, covering all of its retries.
* ``session/compact``: one compaction pass over a session.

Retries show up as ``retry`` events on whichever span is current. Nothing
is exported unless a tracer is installed with :func:`configure_tracing`.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import NoOpTracer, Span, Tracer

from .errors import ConfigError

logger = logging.getLogger(__name__)

EXPORTERS = ("none", "stdout", "otlp")


@dataclass
class TelemetryConfig:
    service_name: str = "mcp-relay"
    enabled: bool = True
    exporter: str = "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TelemetryConfig:
        """Read ``MCP_RELAY_TRACE_EXPORTER`` and ``OTEL_EXPORTER_OTLP_ENDPOINT``."""
        env = os.environ if environ is None else environ
        exporter = env.get("MCP_RELAY_TRACE_EXPORTER", "none").strip().lower() or "none"
        if exporter not in EXPORTERS:
            msg = f"unknown trace exporter '{exporter}', expected one of {', '.join(EXPORTERS)}"
            raise ConfigError(msg)
        return cls(
            exporter=exporter,
            otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT", cls.otlp_endpoint),
        )


def _span_exporter(config: TelemetryConfig) -> SpanExporter | None:
    if config.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return ConsoleSpanExporter()
    if config.exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("otlp exporter requested but the otlp extra is not installed")
            return None
        return OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    return None


class RelayTracer:
    """Owns the tracer provider and hands out relay spans.

    Until :meth:`init` installs an exporter every span is a no-op, so
    instrumented code paths cost nothing when tracing is off.
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self.config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def exporting(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        if not self.config.enabled:
            return
        exporter = _span_exporter(self.config)
        if exporter is None:
            return
        provider = TracerProvider(
            resource=Resource.create({SERVICE_NAME: self.config.service_name})
        )
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        self._provider = provider
        self._tracer = provider.get_tracer("mcp_relay")
        logger.debug("tracing %s spans via %s", self.config.service_name, self.config.exporter)

    @contextlib.contextmanager
    def span(self, name: str, attributes: Mapping[str, Any] | None = None) -> Iterator[Span]:
        with self._tracer.start_as_current_span(name, attributes=dict(attributes or {})) as span:
            yield span

    def event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        """Attach an event to the current span; dropped when nothing records."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    def shutdown(self) -> None:
        provider, self._provider = self._provider, None
        if provider is not None:
            provider.shutdown()
        self._tracer = NoOpTracer()


_DEFAULT_TRACER: RelayTracer | None = None


def get_tracer() -> RelayTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = RelayTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> RelayTracer:
    """Replace the process-wide tracer, flushing the previous one."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = RelayTracer(config)
    _DEFAULT_TRACER.init()
    return _DEFAULT_TRACER


# ---------------------------------------------------------------------------
# Relay spans and events
# ---------------------------------------------------------------------------


def trace_rpc_call(server_id: str, method: str) -> contextlib.AbstractContextManager[Span]:
    return get_tracer().span("mcp/rpc", {"mcp.server": server_id, "rpc.method": method})


def trace_tool_call(server_id: str, tool_name: str) -> contextlib.AbstractContextManager[Span]:
    return get_tracer().span("mcp/call", {"mcp.server": server_id, "mcp.tool": tool_name})


def trace_compaction(server_id: str) -> contextlib.AbstractContextManager[Span]:
    return get_tracer().span("session/compact", {"session.server": server_id})


def record_retry(label: str, attempt: int, delay: float, error: BaseException) -> None:
    """Note a transient failure that is about to be retried."""
    get_tracer().event(
        "retry",
        {
            "retry.label": label,
            "retry.attempt": attempt,
            "retry.delay": delay,
            "error.message": str(error),
        },
    )
