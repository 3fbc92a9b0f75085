"""
DocAgent SDK - Streaming agent sessions for document editor assistants.

Runs one agent turn at a time against a copilot backend: decodes the SSE
stream, executes requested tools against the host editor, tracks task plans
and citations, and keeps the transcript consistent under cancellation and
failure.
"""

from .authorship import AI_AUTHOR, AuthorshipHost, AuthorshipTransaction, with_authorship
from .citations import SourceAccumulator
from .client import AsyncDocAgentClient
from .config import ClientConfig
from .correlation import ToolInvocationTable, ToolUpdate
from .dispatcher import EventDispatcher, TurnListener
from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigError,
    DocAgentError,
    NotFoundError,
    TransportError,
    TurnInProgressError,
    ValidationError,
)
from .models import (
    ChatRequest,
    ItemType,
    Message,
    MessageRole,
    PlanStatus,
    SessionMode,
    Source,
    StatusNotice,
    Task,
    TaskPlan,
    TaskStatus,
    ToolInvocation,
    ToolResult,
    ToolResultAck,
    ToolStatus,
    TranscriptItem,
    TurnState,
)
from .plans import PlanTracker
from .session import CancellationToken, Session, SessionOrchestrator, gather_document_context
from .streaming import SSEEvent, SSEEventType, SSEFrameDecoder, aiter_events, iter_events
from .tools import DOCUMENT_MUTATING_TOOLS, Capability, CapabilityRegistry
from .validation import (
    InputValidationError,
    validate_message,
    validate_mode,
    validate_required,
    validate_string_length,
    validate_url,
)

__version__ = "0.1.0"
__all__ = [
    "AsyncDocAgentClient",
    "ClientConfig",
    "Session",
    "SessionOrchestrator",
    "CancellationToken",
    "gather_document_context",
    "EventDispatcher",
    "TurnListener",
    "SSEEvent",
    "SSEEventType",
    "SSEFrameDecoder",
    "iter_events",
    "aiter_events",
    "Capability",
    "CapabilityRegistry",
    "DOCUMENT_MUTATING_TOOLS",
    "AuthorshipHost",
    "AuthorshipTransaction",
    "with_authorship",
    "AI_AUTHOR",
    "ToolInvocationTable",
    "ToolUpdate",
    "SourceAccumulator",
    "PlanTracker",
    "ChatRequest",
    "ItemType",
    "Message",
    "MessageRole",
    "PlanStatus",
    "SessionMode",
    "Source",
    "StatusNotice",
    "Task",
    "TaskPlan",
    "TaskStatus",
    "ToolInvocation",
    "ToolResult",
    "ToolResultAck",
    "ToolStatus",
    "TranscriptItem",
    "TurnState",
    "DocAgentError",
    "APIError",
    "AuthenticationError",
    "ConfigError",
    "NotFoundError",
    "TransportError",
    "TurnInProgressError",
    "ValidationError",
    "InputValidationError",
    "validate_required",
    "validate_string_length",
    "validate_url",
    "validate_mode",
    "validate_message",
]
