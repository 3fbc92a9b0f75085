"""
DocAgent SDK - Event dispatcher for one streamed agent turn.

Each decoded SSE event is applied to the assistant message being built:
text deltas accumulate in a buffer, tool requests run against the capability
registry, tool reports are correlated with recorded invocations, and plan
events update the session's task plan.

Events are processed strictly one at a time. A ``tool_result_request`` is
fully handled, including the acknowledgement sent back to the backend,
before the next event is looked at, because later events refer to the
invocation it records.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .authorship import AuthorshipTransaction
from .citations import SourceAccumulator, extract_sources
from .correlation import ToolInvocationTable
from .models import (
    ItemType,
    Message,
    StatusNotice,
    TaskPlan,
    ToolInvocation,
    ToolResult,
    ToolStatus,
    TranscriptItem,
    TurnState,
)
from .plans import PlanTracker
from .streaming import SSEEvent, SSEEventType
from .tools import CapabilityRegistry

logger = logging.getLogger("docagent.dispatcher")

ToolResultSender = Callable[[ToolInvocation, ToolResult], Awaitable[Any]]

DEFAULT_STATUS_TTL = 5.0

PLAN_EVENTS = frozenset(
    {
        SSEEventType.PLAN_CREATED.value,
        SSEEventType.PLAN_START.value,
        SSEEventType.TASK_START.value,
        SSEEventType.TASK_COMPLETE.value,
        SSEEventType.PLAN_PROGRESS.value,
        SSEEventType.PLAN_COMPLETE.value,
    }
)
KNOWN_EVENTS = frozenset(e.value for e in SSEEventType)


class TurnListener:
    """
    Presentation hooks called while a turn streams.

    Subclass and override what the UI needs. Hooks may be coroutines.
    Exceptions raised by a hook are logged and never interrupt the turn.
    """

    def on_thinking(self, message: Message, text: str) -> Any:
        pass

    def on_content(self, message: Message, delta: str, text: str) -> Any:
        pass

    def on_tool_update(self, message: Message, invocation: ToolInvocation) -> Any:
        pass

    def on_checkpoint(self, message: Message) -> Any:
        pass

    def on_sources(self, message: Message, start: int, sources: list) -> Any:
        pass

    def on_plan_update(self, plan: TaskPlan) -> Any:
        pass

    def on_status(self, notice: StatusNotice) -> Any:
        pass

    def on_error(self, message: Message, error: str) -> Any:
        pass

    def on_done(self, message: Message) -> Any:
        pass


class EventDispatcher:
    """State machine applying SSE events to an assistant message."""

    def __init__(
        self,
        message: Message,
        registry: CapabilityRegistry,
        plans: Optional[PlanTracker] = None,
        authorship: Optional[AuthorshipTransaction] = None,
        send_tool_result: Optional[ToolResultSender] = None,
        listener: Optional[TurnListener] = None,
        status_ttl: float = DEFAULT_STATUS_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.message = message
        self.registry = registry
        self.plans = plans if plans is not None else PlanTracker()
        self.authorship = authorship
        self.send_tool_result = send_tool_result
        self.listener = listener or TurnListener()
        self.status_ttl = status_ttl
        self.clock = clock

        self.state = TurnState.IDLE
        self.tools = ToolInvocationTable(message.tool_invocations)
        self.sources = SourceAccumulator(message.sources)
        self.error: Optional[str] = None
        self._buffer: list[str] = []
        self._status: Optional[StatusNotice] = None
        self._pending: set[asyncio.Task] = set()

    @property
    def content(self) -> str:
        """Text streamed so far."""
        return "".join(self._buffer)

    @property
    def status_notice(self) -> Optional[StatusNotice]:
        """The current advisory, or None once it has expired."""
        if self._status is not None and not self._status.is_active(self.clock()):
            self._status = None
        return self._status

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, event: SSEEvent) -> TurnState:
        """Apply one event and return the resulting state."""
        if self.state.is_terminal:
            logger.debug("Turn already %s; ignoring %r event", self.state.value, event.type)
            return self.state
        if self.state == TurnState.IDLE:
            self.state = TurnState.STREAMING

        if event.type not in KNOWN_EVENTS:
            logger.debug("Ignoring unknown event type %r", event.type)
            return self.state

        try:
            if event.type in PLAN_EVENTS:
                await self._handle_plan_event(event.type, event.data)
            else:
                handler = getattr(self, f"_handle_{event.type}")
                await handler(event.data)
        except Exception:
            # A malformed frame is skipped; the turn carries on
            logger.exception("Failed to apply %r event: %s", event.type, event.raw)
        return self.state

    async def _handle_thinking(self, data: dict[str, Any]) -> None:
        text = str(data.get("content", ""))
        self.message.items.append(TranscriptItem(ItemType.THINKING, content=text))
        await self._notify(self.listener.on_thinking, self.message, text)

    async def _handle_content(self, data: dict[str, Any]) -> None:
        delta = data.get("delta")
        if delta is None:
            return
        if not isinstance(delta, str):
            delta = str(delta)
        if not delta:
            return
        self._buffer.append(delta)
        await self._notify(self.listener.on_content, self.message, delta, self.content)

    async def _handle_checkpoint(self, data: dict[str, Any]) -> None:
        self.message.items.append(TranscriptItem(ItemType.CHECKPOINT))
        await self._notify(self.listener.on_checkpoint, self.message)

    async def _handle_status(self, data: dict[str, Any]) -> None:
        ttl = data.get("duration", data.get("retry_after", self.status_ttl))
        try:
            ttl = float(ttl)
        except (TypeError, ValueError):
            ttl = self.status_ttl
        notice = StatusNotice(
            message=str(data.get("message") or data.get("content") or ""),
            kind=str(data.get("kind") or data.get("type") or "info"),
            expires_at=self.clock() + ttl,
        )
        self._status = notice
        await self._notify(self.listener.on_status, notice)

    async def _handle_sources(self, data: dict[str, Any]) -> None:
        batch = extract_sources(data)
        if batch:
            start = self.sources.append(batch)
            await self._notify(self.listener.on_sources, self.message, start, self.sources.sources[start:])

    async def _handle_error(self, data: dict[str, Any]) -> None:
        self.error = str(data.get("message") or data.get("error") or "Unknown error")
        logger.error("Backend reported an error: %s", self.error)
        self.state = TurnState.ERRORED
        self.message.error = self.error
        await self._notify(self.listener.on_error, self.message, self.error)

    async def _handle_done(self, data: dict[str, Any]) -> None:
        self.state = TurnState.FINALIZING
        self.finish()
        await self._notify(self.listener.on_done, self.message)

    async def _handle_plan_event(self, event_type: str, data: dict[str, Any]) -> None:
        plan = self.plans.handle(event_type, data)
        if plan is not None:
            await self._notify(self.listener.on_plan_update, plan)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _handle_tool_result_request(self, data: dict[str, Any]) -> None:
        tool_call_id = data.get("id")
        name = data.get("name", "")
        if tool_call_id and self.tools.find_by_id(tool_call_id) is not None:
            logger.warning("Tool call %s (%s) was already requested; not executing again", tool_call_id, name)
            return

        inv = self.tools.start(tool_call_id, name, data.get("params") or {})
        self.message.items.append(TranscriptItem(ItemType.TOOL_CALL, invocation=inv))
        await self._notify(self.listener.on_tool_update, self.message, inv)

        # Cancelling the turn must not abort an edit already under way
        task = asyncio.ensure_future(self._run_tool(inv))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        result = await asyncio.shield(task)

        await self._acknowledge(inv, result)

    async def _run_tool(self, inv: ToolInvocation) -> ToolResult:
        logger.info("Executing tool %s (id=%s)", inv.name, inv.id)
        try:
            if self.authorship is not None and self.registry.mutates_document(inv.name):
                result = await self.authorship.run(lambda: self.registry.execute(inv.name, inv.params))
            else:
                result = await self.registry.execute(inv.name, inv.params)
        except Exception as e:
            logger.exception("Tool %s failed outside its handler", inv.name)
            result = ToolResult(success=False, error=str(e))

        if inv.complete(result.success, result.result, result.error):
            if result.success:
                await self._collect_sources(inv, result.result)
            await self._notify(self.listener.on_tool_update, self.message, inv)
        return result

    async def _acknowledge(self, inv: ToolInvocation, result: ToolResult) -> None:
        if self.send_tool_result is None:
            return
        try:
            await self.send_tool_result(inv, result)
        except Exception as e:
            logger.warning("Failed to send tool result for %s (%s): %s", inv.id, inv.name, e)

    async def _handle_tool_call(self, data: dict[str, Any]) -> None:
        update = self.tools.apply_status_event(data)
        inv = update.invocation
        if update.created:
            self.message.items.append(TranscriptItem(ItemType.TOOL_CALL, invocation=inv))
        if update.completed and inv.status == ToolStatus.SUCCESS:
            await self._collect_sources(inv, inv.result)
        if update.created or update.completed:
            await self._notify(self.listener.on_tool_update, self.message, inv)

    async def _collect_sources(self, inv: ToolInvocation, result: Any) -> None:
        batch = extract_sources(result)
        if not batch or self.sources.finalized:
            return
        inv.source_start = self.sources.append(batch)
        await self._notify(
            self.listener.on_sources, self.message, inv.source_start, self.sources.sources[inv.source_start :]
        )

    async def drain(self) -> None:
        """Wait for tool calls still running after the turn was cancelled."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def finish(self) -> Message:
        """Freeze the message content, seal tool cards and close citations.

        Safe to call more than once. A stream that ends without ``done`` is
        treated as finished.
        """
        if not self.state.is_terminal:
            self.state = TurnState.FINALIZING
        if not self.message.finalized:
            self.message.finalize(self.content)
            for inv in self.message.tool_invocations:
                inv.sealed = True
            self.sources.finalize()
        return self.message

    def cancel(self) -> Message:
        if not self.state.is_terminal:
            self.state = TurnState.CANCELLED
        return self.finish()

    def fail(self, error: str) -> Message:
        if not self.state.is_terminal:
            self.state = TurnState.ERRORED
        self.error = error
        if self.message.error is None:
            self.message.error = error
        return self.finish()

    async def _notify(self, hook: Callable[..., Any], *args: Any) -> None:
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception("Listener hook %s failed: %s", getattr(hook, "__name__", hook), e)
