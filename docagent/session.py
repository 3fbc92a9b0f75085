"""
DocAgent SDK - Chat sessions and the agent-turn orchestrator.

A :class:`Session` holds one conversation: its transcript, mode, selected
agent and active task plan. A :class:`SessionOrchestrator` runs agent turns
for a session, one at a time.

Usage:
    ```python
    registry = CapabilityRegistry()
    registry.register("insert_text", editor.insert_text)

    async with AsyncDocAgentClient(config=ClientConfig.from_env()) as client:
        session = Session(mode=SessionMode.AGENT)
        orchestrator = SessionOrchestrator(session, client, registry, authorship_host=editor)
        reply = await orchestrator.send("Insert a heading for the scope section")
        print(reply.content)
    ```
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Optional

from .authorship import AuthorshipHost, AuthorshipTransaction
from .client import AsyncDocAgentClient
from .config import ClientConfig
from .dispatcher import EventDispatcher, TurnListener
from .exceptions import DocAgentError, TurnInProgressError
from .models import (
    ChatRequest,
    Message,
    MessageRole,
    SessionMode,
    StatusNotice,
    TaskPlan,
    ToolInvocation,
    ToolResult,
    ToolResultAck,
    TurnState,
    generate_id,
)
from .plans import PlanTracker
from .tools import CapabilityRegistry
from .validation import validate_message, validate_mode

logger = logging.getLogger("docagent.session")

ContextProvider = Callable[[CapabilityRegistry], Awaitable[dict[str, Any]]]

DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 40


async def gather_document_context(registry: CapabilityRegistry) -> dict[str, Any]:
    """Default context sent with each turn: the current selection, if any."""
    context: dict[str, Any] = {
        "selected_text": None,
        "document_outline": None,
        "cursor_position": "current",
    }
    if "get_selected_text" in registry:
        result = await registry.execute("get_selected_text")
        if result.success and result.result:
            context["selected_text"] = result.result
    return context


class CancellationToken:
    """Records that the in-flight turn was cancelled by the user."""

    def __init__(self) -> None:
        self.cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "user") -> None:
        self.cancelled = True
        self.reason = reason

    def reset(self) -> None:
        self.cancelled = False
        self.reason = None


class Session:
    """One conversation with the agent, scoped to a single document."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        mode: SessionMode = SessionMode.ASK,
        selected_agent_id: Optional[str] = None,
        editor_doc_id: Optional[str] = None,
    ):
        self.session_id = session_id or generate_id()
        self.mode = validate_mode(mode)
        self.selected_agent_id = selected_agent_id
        self.editor_doc_id = editor_doc_id
        self.transcript: list[Message] = []
        self.title = DEFAULT_TITLE
        self.cancellation = CancellationToken()
        self.plans = PlanTracker()

    @property
    def active_plan(self) -> Optional[TaskPlan]:
        return self.plans.plan

    @property
    def last_message(self) -> Optional[Message]:
        return self.transcript[-1] if self.transcript else None

    def set_mode(self, mode: Any) -> None:
        self.mode = validate_mode(mode)

    def add_message(self, message: Message) -> Message:
        self.transcript.append(message)
        if message.role == MessageRole.USER and self.title == DEFAULT_TITLE:
            text = message.content
            self.title = text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")
        return message

    def remove_message(self, message: Message) -> None:
        if message in self.transcript:
            self.transcript.remove(message)

    def conversation_history(self, limit: int = 20) -> list[dict[str, str]]:
        """The last ``limit`` user and assistant messages as ``{role, content}``."""
        turns = [m for m in self.transcript if m.role in (MessageRole.USER, MessageRole.ASSISTANT)]
        return [m.to_history_entry() for m in turns[-limit:]] if limit > 0 else []

    def reset(self) -> None:
        """Clear the conversation, keeping the session id."""
        self.transcript = []
        self.title = DEFAULT_TITLE
        self.plans = PlanTracker()
        self.cancellation.reset()

    def bind_document(self, editor_doc_id: Optional[str]) -> bool:
        """Attach the session to a document. Returns True if that started a new conversation."""
        if editor_doc_id == self.editor_doc_id:
            return False
        changed = self.editor_doc_id is not None
        self.editor_doc_id = editor_doc_id
        if changed:
            logger.info("Document changed to %s; starting a new conversation", editor_doc_id)
            self.reset()
            self.session_id = generate_id()
        return changed


class SessionOrchestrator:
    """Runs agent turns for a session, one at a time."""

    def __init__(
        self,
        session: Session,
        client: AsyncDocAgentClient,
        registry: CapabilityRegistry,
        authorship_host: Optional[AuthorshipHost] = None,
        listener: Optional[TurnListener] = None,
        config: Optional[ClientConfig] = None,
        context_provider: Optional[ContextProvider] = None,
    ):
        self.session = session
        self.client = client
        self.registry = registry
        self.listener = listener
        self.config = config or client.config
        self.context_provider = context_provider or gather_document_context
        self.authorship: Optional[AuthorshipTransaction] = None
        if authorship_host is not None:
            self.authorship = AuthorshipTransaction(
                authorship_host,
                identity=self.config.ai_author,
                settle_delay=self.config.settle_delay,
            )
        self._busy = False
        self._turn_task: Optional[asyncio.Task] = None
        self._dispatcher: Optional[EventDispatcher] = None
        self._background: set[asyncio.Task] = set()
        self._retired: set[EventDispatcher] = set()

    @property
    def in_flight(self) -> bool:
        return self._busy

    @property
    def state(self) -> TurnState:
        return self._dispatcher.state if self._dispatcher else TurnState.IDLE

    @property
    def status_notice(self) -> Optional[StatusNotice]:
        return self._dispatcher.status_notice if self._dispatcher else None

    async def send(self, text: str) -> Message:
        """
        Send a user message and run the agent turn to completion.

        Returns the finalized assistant message, or an error message if the
        backend could not be reached.

        Raises:
            TurnInProgressError: If another turn is still streaming.
            InputValidationError: If ``text`` is empty or too long.
        """
        if self._busy:
            raise TurnInProgressError("A response is already being generated")
        text = validate_message(text)

        self._busy = True
        try:
            return await self._send(text)
        finally:
            self._busy = False
            self._turn_task = None

    async def _send(self, text: str) -> Message:
        self.session.cancellation.reset()
        self.session.add_message(Message.user(text))
        # An edit left running by a cancelled turn must release the author first
        await self._drain_tools()
        request = await self._build_request(text)

        assistant = self.session.add_message(Message.assistant())
        dispatcher = EventDispatcher(
            assistant,
            self.registry,
            plans=self.session.plans,
            authorship=self.authorship,
            send_tool_result=self._send_tool_result,
            listener=self.listener,
            status_ttl=self.config.status_ttl,
        )
        self._dispatcher = dispatcher
        if self.session.cancellation.cancelled:
            dispatcher.cancel()
            return assistant

        self._turn_task = asyncio.ensure_future(self._run_turn(request, dispatcher))
        try:
            await self._turn_task
        except asyncio.CancelledError:
            if not self.session.cancellation.cancelled:
                dispatcher.cancel()
                raise
            logger.info("Turn cancelled for session %s", self.session.session_id)
            dispatcher.cancel()
        except DocAgentError as e:
            logger.error("Turn failed for session %s: %s", self.session.session_id, e)
            dispatcher.fail(str(e))
            if assistant.is_empty:
                self.session.remove_message(assistant)
            return self.session.add_message(Message.error_message(f"Connection error: {e.message}"))
        except Exception as e:
            dispatcher.fail(str(e))
            raise

        if dispatcher.state == TurnState.FINALIZING and assistant.is_empty:
            self.session.remove_message(assistant)
        return assistant

    async def _build_request(self, text: str) -> ChatRequest:
        try:
            context = await self.context_provider(self.registry)
        except Exception as e:
            logger.warning("Could not gather document context: %s", e)
            context = {}
        return ChatRequest(
            session_id=self.session.session_id,
            message=text,
            mode=self.session.mode,
            context=context,
            conversation_history=self.session.conversation_history(self.config.history_limit),
            editor_doc_id=self.session.editor_doc_id,
            agent=self.session.selected_agent_id,
        )

    async def _run_turn(self, request: ChatRequest, dispatcher: EventDispatcher) -> None:
        async with aclosing(self.client.stream_turn(request)) as events:
            async for event in events:
                state = await dispatcher.dispatch(event)
                if state.is_terminal:
                    break
        dispatcher.finish()

    async def _send_tool_result(self, invocation: ToolInvocation, result: ToolResult) -> None:
        ack = ToolResultAck(
            session_id=self.session.session_id,
            tool_call_id=invocation.id,
            result=result.result,
            success=result.success,
            error=result.error,
        )
        await self.client.send_tool_result(ack)

    def cancel(self) -> None:
        """
        Stop the in-flight turn.

        The network read is aborted and the backend is told to stop. Content
        and tool results received so far stay in the transcript; a tool call
        already executing is allowed to finish.
        """
        if not self._busy:
            return
        self.session.cancellation.cancel("user")
        if self._turn_task is not None and not self._turn_task.done():
            self._turn_task.cancel()
        task = asyncio.ensure_future(self._send_stop())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_stop(self) -> None:
        try:
            await self.client.stop(self.session.session_id)
        except Exception as e:
            logger.warning("Failed to send stop request: %s", e)

    async def drain(self) -> None:
        """Wait for the stop signal and any tool call that outlived a cancelled turn."""
        await self._drain_tools()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def clear(self) -> None:
        """Reset the conversation. Not allowed while a turn is streaming."""
        if self._busy:
            raise TurnInProgressError("Cannot clear the chat while a response is being generated")
        self.session.reset()
        if self._dispatcher is not None:
            self._retired.add(self._dispatcher)
        self._dispatcher = None

    async def _drain_tools(self) -> None:
        dispatchers = list(self._retired)
        if self._dispatcher is not None:
            dispatchers.append(self._dispatcher)
        for dispatcher in dispatchers:
            await dispatcher.drain()
        self._retired.difference_update(dispatchers)
