"""mcp-relay: stdio JSON-RPC bridge to MCP workers with bounded chat context."""

from __future__ import annotations

__version__ = "0.1.0"

from .bridge import ToolGateway, ToolResult
from .channel import PendingRequest, RpcChannel
from .chat import ChatService
from .compactor import CompactionReport, SessionCompactor
from .config import BackendConfig, BackendDescriptor, RelaySettings
from .context_window import ContextPart, ContextWindowManager, byte_len, trim_to_bytes
from .conversation import ChatMemory, ConversationTurn
from .discovery import LIST_VARIANTS, ListVariant, ToolDiscovery
from .errors import (
    ChannelClosed,
    ConfigError,
    HttpBackendError,
    LLMError,
    MalformedFrame,
    McpError,
    ProcessExited,
    RelayError,
    RpcTimeout,
    TransientProtocolError,
    TransportUnsupported,
    WorkerSpawnError,
)
from .framing import LineDecoder, RpcMessage
from .history import SessionManager
from .llm import (
    ChatCompletionClient,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    LLMProvider,
    StubLLMProvider,
    TokenUsage,
)
from .retry import RetryPolicy, is_transient
from .session import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionState,
    SessionStore,
    Turn,
    TurnRole,
)
from .supervisor import BackendState, ProcessSupervisor, WorkerProcess, WorkerStatus
from .telemetry import (
    RelayTracer,
    TelemetryConfig,
    configure_tracing,
    record_retry,
    trace_compaction,
    trace_rpc_call,
    trace_tool_call,
)

__all__ = [
    "BackendConfig",
    "BackendDescriptor",
    "BackendState",
    "ChatCompletionClient",
    "ChatMemory",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "ChannelClosed",
    "ChatService",
    "CompactionReport",
    "ConfigError",
    "ContextPart",
    "ContextWindowManager",
    "ConversationTurn",
    "HttpBackendError",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "LIST_VARIANTS",
    "LLMError",
    "LLMProvider",
    "LineDecoder",
    "ListVariant",
    "MalformedFrame",
    "McpError",
    "PendingRequest",
    "ProcessExited",
    "ProcessSupervisor",
    "RelayError",
    "RelaySettings",
    "RelayTracer",
    "RetryPolicy",
    "RpcChannel",
    "RpcMessage",
    "RpcTimeout",
    "SessionCompactor",
    "SessionManager",
    "SessionState",
    "SessionStore",
    "StubLLMProvider",
    "TelemetryConfig",
    "TokenUsage",
    "ToolDiscovery",
    "ToolGateway",
    "ToolResult",
    "TransientProtocolError",
    "TransportUnsupported",
    "Turn",
    "TurnRole",
    "WorkerProcess",
    "WorkerSpawnError",
    "WorkerStatus",
    "byte_len",
    "configure_tracing",
    "is_transient",
    "record_retry",
    "trace_compaction",
    "trace_rpc_call",
    "trace_tool_call",
    "trim_to_bytes",
]
