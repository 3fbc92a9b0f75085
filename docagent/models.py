"""
DocAgent SDK - Data models for agent sessions, transcripts, tools and plans.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


def generate_id() -> str:
    return uuid.uuid4().hex


def _parse_status(enum_cls: type, value: Any, default: Enum) -> Any:
    """Coerce a backend status string, falling back to ``default`` when unknown."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


class SessionMode(str, Enum):
    """Conversation mode requested from the backend."""

    ASK = "ask"
    AGENT = "agent"


class MessageRole(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


class ToolStatus(str, Enum):
    """Status of a tool invocation."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class ItemType(str, Enum):
    """Kinds of entries shown between the text of an assistant message."""

    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    CHECKPOINT = "checkpoint"


class PlanStatus(str, Enum):
    """Status of a task plan."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    """Status of a single task inside a plan."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TurnState(str, Enum):
    """Lifecycle of one streamed agent turn."""

    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.FINALIZING, TurnState.CANCELLED, TurnState.ERRORED)


@dataclass
class ToolResult:
    """Outcome of executing a capability locally."""

    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "result": self.result}
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(
            success=bool(data.get("success", False)),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass
class Source:
    """
    A retrieved source backing citation markers in generated text.

    Position in a message's source list is the citation number minus one.
    """

    title: str
    source_type: str = "doc"
    snippet: str = ""
    full_text: Optional[str] = None
    url: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = ("title", "code", "source_type", "sourceType", "snippet", "full_text", "fullText", "url")

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.metadata)
        data.update(
            {
                "title": self.title,
                "source_type": self.source_type,
                "snippet": self.snippet,
                "full_text": self.full_text,
                "url": self.url,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        return cls(
            title=data.get("title") or data.get("code") or "",
            source_type=data.get("source_type") or data.get("sourceType") or "doc",
            snippet=data.get("snippet") or "",
            full_text=data.get("full_text", data.get("fullText")),
            url=data.get("url"),
            metadata={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


@dataclass
class ToolInvocation:
    """
    Record of one request/response cycle for a named capability.

    ``id`` is optional: older backends omit it and correlation falls back to
    the tool name.
    """

    name: str
    id: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)
    status: ToolStatus = ToolStatus.RUNNING
    result: Any = None
    error: Optional[str] = None
    source_start: Optional[int] = None
    sealed: bool = False

    @property
    def is_running(self) -> bool:
        return self.status == ToolStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status != ToolStatus.RUNNING

    def complete(self, success: bool, result: Any = None, error: Optional[str] = None) -> bool:
        """Move to a terminal status. Returns False if already terminal."""
        if self.is_terminal:
            return False
        self.status = ToolStatus.SUCCESS if success else ToolStatus.ERROR
        self.result = result
        self.error = error
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "params": self.params,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "source_start": self.source_start,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolInvocation":
        return cls(
            id=data.get("id"),
            name=data.get("name", ""),
            params=data.get("params") or {},
            status=ToolStatus(data.get("status", "running")),
            result=data.get("result"),
            error=data.get("error"),
            source_start=data.get("source_start"),
        )


@dataclass
class TranscriptItem:
    """An entry rendered between message text: a thought, a tool card or a checkpoint."""

    type: ItemType
    content: Optional[str] = None
    invocation: Optional[ToolInvocation] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            data["content"] = self.content
        if self.invocation is not None:
            data.update(self.invocation.to_dict())
            data["type"] = self.type.value
        return data


@dataclass
class Message:
    """
    One turn's output in the transcript.

    Assistant messages are created empty when a turn starts; their
    ``content`` is assigned exactly once by :meth:`finalize`.
    """

    role: MessageRole
    content: str = ""
    id: str = field(default_factory=generate_id)
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    items: list[TranscriptItem] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None
    finalized: bool = False

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=MessageRole.USER, content=text, finalized=True)

    @classmethod
    def assistant(cls) -> "Message":
        return cls(role=MessageRole.ASSISTANT)

    @classmethod
    def error_message(cls, text: str) -> "Message":
        return cls(role=MessageRole.ERROR, content=text, error=text, finalized=True)

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.items and not self.tool_invocations

    def finalize(self, content: str) -> None:
        if self.finalized:
            raise RuntimeError(f"Message {self.id} is already finalized")
        self.content = content
        self.finalized = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "tool_invocations": [t.to_dict() for t in self.tool_invocations],
            "sources": [s.to_dict() for s in self.sources],
            "items": [i.to_dict() for i in self.items],
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }

    def to_history_entry(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class Task:
    """A single step of a server-declared task plan."""

    id: str
    title: str = ""
    target_section: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "target_section": self.target_section,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id") or data.get("task_id") or ""),
            title=data.get("title", ""),
            target_section=data.get("target_section"),
            status=_parse_status(TaskStatus, data.get("status"), TaskStatus.PENDING),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass
class TaskPlan:
    """
    A multi-step checklist declared by the agent for the current turn.

    The task list is fixed when the plan is created.
    """

    id: str
    goal: str = ""
    title: str = ""
    tasks: list[Task] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    progress: dict[str, int] = field(default_factory=dict)
    summary: Optional[str] = None

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def count(self, status: TaskStatus) -> int:
        return sum(1 for t in self.tasks if t.status == status)

    @property
    def total(self) -> int:
        return len(self.tasks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "goal": self.goal,
            "title": self.title,
            "tasks": [t.to_dict() for t in self.tasks],
            "status": self.status.value,
            "progress": dict(self.progress),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskPlan":
        tasks = data.get("tasks")
        if not isinstance(tasks, list):
            tasks = []
        return cls(
            id=str(data.get("plan_id") or data.get("id") or ""),
            goal=data.get("goal", ""),
            title=data.get("title", ""),
            tasks=[Task.from_dict(t) for t in tasks if isinstance(t, dict)],
            status=_parse_status(PlanStatus, data.get("status"), PlanStatus.PENDING),
        )


@dataclass
class StatusNotice:
    """Ephemeral advisory from the backend, such as a rate-limit backoff."""

    message: str
    kind: str = "info"
    expires_at: float = 0.0

    def is_active(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now < self.expires_at


@dataclass
class ChatRequest:
    """Body of the request that opens one agent turn."""

    session_id: str
    message: str
    mode: SessionMode
    context: dict[str, Any] = field(default_factory=dict)
    conversation_history: list[dict[str, str]] = field(default_factory=list)
    editor_doc_id: Optional[str] = None
    agent: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "message": self.message,
            "mode": self.mode.value,
            "context": self.context,
            "conversation_history": self.conversation_history,
            "editor_doc_id": self.editor_doc_id,
        }
        if self.agent:
            data["agent"] = self.agent
        return data


@dataclass
class ToolResultAck:
    """Side-channel payload returning a local tool result to the backend."""

    session_id: str
    tool_call_id: Optional[str]
    result: Any = None
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tool_call_id": self.tool_call_id,
            "result": self.result,
            "success": self.success,
            "error": self.error,
        }
