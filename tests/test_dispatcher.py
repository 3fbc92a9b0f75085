"""
Tests for the per-turn event dispatcher.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docagent.authorship import AuthorshipTransaction
from docagent.dispatcher import EventDispatcher, TurnListener
from docagent.models import ItemType, Message, TaskStatus, ToolStatus, TurnState
from docagent.plans import PlanTracker
from docagent.streaming import SSEEvent
from docagent.tools import CapabilityRegistry


def ev(event_type: str, **data) -> SSEEvent:
    return SSEEvent(type=event_type, data=data)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def registry():
    registry = CapabilityRegistry()
    registry.register("insert_text", AsyncMock(return_value={"success": True, "message": "Text inserted"}))
    registry.register(
        "search_guidelines",
        AsyncMock(return_value={"sources": [{"title": "ICH E3"}, {"title": "ICH E6"}]}),
    )
    return registry


def make_dispatcher(registry, **kwargs) -> EventDispatcher:
    return EventDispatcher(Message.assistant(), registry, **kwargs)


# ---------------------------------------------------------------------------
# Content and Lifecycle
# ---------------------------------------------------------------------------


class TestContent:
    @pytest.mark.asyncio
    async def test_deltas_accumulate_and_finalize_on_done(self, registry):
        listener = MagicMock(spec=TurnListener)
        d = make_dispatcher(registry, listener=listener)

        assert await d.dispatch(ev("content", delta="Hello ")) == TurnState.STREAMING
        await d.dispatch(ev("content", delta="world"))
        assert d.message.content == ""
        assert d.content == "Hello world"

        assert await d.dispatch(ev("done")) == TurnState.FINALIZING
        assert d.message.content == "Hello world"
        assert d.message.finalized is True
        listener.on_content.assert_called_with(d.message, "world", "Hello world")
        listener.on_done.assert_called_once_with(d.message)

    @pytest.mark.asyncio
    async def test_events_after_terminal_state_ignored(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("content", delta="a"))
        await d.dispatch(ev("done"))
        await d.dispatch(ev("content", delta="b"))
        assert d.message.content == "a"
        assert d.state == TurnState.FINALIZING

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, registry):
        d = make_dispatcher(registry)
        assert await d.dispatch(ev("heartbeat", n=1)) == TurnState.STREAMING
        await d.dispatch(ev("content", delta="ok"))
        await d.dispatch(ev("done"))
        assert d.message.content == "ok"

    @pytest.mark.asyncio
    async def test_thinking_and_checkpoint_items(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("thinking", content="Reading the outline"))
        await d.dispatch(ev("checkpoint"))
        assert [i.type for i in d.message.items] == [ItemType.THINKING, ItemType.CHECKPOINT]
        assert d.message.items[0].content == "Reading the outline"

    @pytest.mark.asyncio
    async def test_error_keeps_partial_content(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("content", delta="Partial answer"))
        assert await d.dispatch(ev("error", message="Model overloaded")) == TurnState.ERRORED
        d.finish()

        assert d.message.content == "Partial answer"
        assert d.message.error == "Model overloaded"
        assert d.state == TurnState.ERRORED

    @pytest.mark.asyncio
    async def test_finish_is_idempotent(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("content", delta="x"))
        d.finish()
        d.finish()
        d.cancel()
        assert d.message.content == "x"
        assert d.state == TurnState.FINALIZING

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_stop_turn(self, registry, caplog):
        class Broken(TurnListener):
            async def on_content(self, message, delta, text):
                raise RuntimeError("render failed")

        d = make_dispatcher(registry, listener=Broken())
        with caplog.at_level("ERROR", logger="docagent.dispatcher"):
            await d.dispatch(ev("content", delta="a"))
            await d.dispatch(ev("done"))
        assert d.message.content == "a"
        assert "render failed" in caplog.text
        assert "Listener hook on_content failed" in caplog.text


class TestStatus:
    @pytest.mark.asyncio
    async def test_notice_expires(self, registry):
        clock = FakeClock()
        d = make_dispatcher(registry, clock=clock, status_ttl=5.0)

        await d.dispatch(ev("status", message="Rate limited, retrying", kind="rate_limit"))
        assert d.status_notice.message == "Rate limited, retrying"
        assert d.status_notice.kind == "rate_limit"

        clock.now += 4.9
        assert d.status_notice is not None
        clock.now += 0.2
        assert d.status_notice is None

    @pytest.mark.asyncio
    async def test_duration_from_event(self, registry):
        clock = FakeClock()
        d = make_dispatcher(registry, clock=clock)
        await d.dispatch(ev("status", message="Waiting", retry_after=30))
        clock.now += 20
        assert d.status_notice is not None

    @pytest.mark.asyncio
    async def test_notice_does_not_touch_content(self, registry):
        d = make_dispatcher(registry, clock=FakeClock())
        await d.dispatch(ev("status", message="busy"))
        await d.dispatch(ev("done"))
        assert d.message.content == ""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class TestToolRequests:
    @pytest.mark.asyncio
    async def test_request_and_report_share_one_invocation(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "## Scope"}))
        await d.dispatch(ev("tool_call", id="t1", name="insert_text", status="success"))

        assert len(d.message.tool_invocations) == 1
        inv = d.message.tool_invocations[0]
        assert inv.status == ToolStatus.SUCCESS
        assert inv.params == {"text": "## Scope"}
        tool_items = [i for i in d.message.items if i.type == ItemType.TOOL_CALL]
        assert len(tool_items) == 1

    @pytest.mark.asyncio
    async def test_result_acknowledged_before_next_event(self, registry):
        order = []

        async def handler(text):
            order.append("execute")
            return {"success": True}

        registry.register("insert_text", handler)

        async def sender(inv, result):
            order.append(("ack", inv.id, result.success))

        d = make_dispatcher(registry, send_tool_result=sender)
        await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "x"}))
        order.append("next")
        await d.dispatch(ev("content", delta="Done."))

        assert order == ["execute", ("ack", "t1", True), "next"]

    @pytest.mark.asyncio
    async def test_unknown_tool_acknowledged_as_failure(self, registry):
        sender = AsyncMock()
        d = make_dispatcher(registry, send_tool_result=sender)
        await d.dispatch(ev("tool_result_request", id="t9", name="go_to_page", params={"page": 3}))

        inv = d.message.tool_invocations[0]
        assert inv.status == ToolStatus.ERROR
        assert inv.error == "Unknown tool: go_to_page"
        (_, result), _ = sender.call_args
        assert result.success is False

    @pytest.mark.asyncio
    async def test_duplicate_request_not_executed_twice(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "a"}))
        await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "a"}))
        assert registry.get("insert_text").handler.await_count == 1
        assert len(d.message.tool_invocations) == 1

    @pytest.mark.asyncio
    async def test_ack_failure_is_logged(self, registry, caplog):
        sender = AsyncMock(side_effect=RuntimeError("backend gone"))
        d = make_dispatcher(registry, send_tool_result=sender)
        with caplog.at_level("WARNING", logger="docagent.dispatcher"):
            await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "a"}))
        assert d.message.tool_invocations[0].status == ToolStatus.SUCCESS
        assert "backend gone" in caplog.text

    @pytest.mark.asyncio
    async def test_server_side_tool_report(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("tool_call", id="s1", name="get_document_outline", status="running"))
        inv = d.message.tool_invocations[0]
        assert inv.status == ToolStatus.RUNNING
        await d.dispatch(ev("tool_call", id="s1", name="get_document_outline", status="success", result=["1"]))
        assert inv.status == ToolStatus.SUCCESS
        assert len(d.message.tool_invocations) == 1

    @pytest.mark.asyncio
    async def test_mutating_tool_runs_as_ai_author(self, registry):
        host = MagicMock()
        host.mark_author = AsyncMock()
        host.restore_author = AsyncMock()
        txn = AuthorshipTransaction(host, identity="AI Assistant", settle_delay=0)
        d = make_dispatcher(registry, authorship=txn)

        await d.dispatch(ev("tool_result_request", id="t1", name="insert_text", params={"text": "a"}))
        host.mark_author.assert_awaited_once_with("AI Assistant")
        host.restore_author.assert_awaited_once()

        await d.dispatch(ev("tool_result_request", id="t2", name="search_guidelines", params={}))
        assert host.mark_author.await_count == 1


class TestSources:
    @pytest.mark.asyncio
    async def test_tool_result_sources_numbered_in_order(self, registry):
        registry.register("search_fda", AsyncMock(return_value={"sources": [{"title": "FDA 1"}]}))
        d = make_dispatcher(registry)

        await d.dispatch(ev("tool_result_request", id="a", name="search_guidelines", params={}))
        await d.dispatch(ev("tool_result_request", id="b", name="search_fda", params={}))
        await d.dispatch(ev("content", delta="See [3]."))
        await d.dispatch(ev("done"))

        assert [s.title for s in d.message.sources] == ["ICH E3", "ICH E6", "FDA 1"]
        assert d.message.tool_invocations[1].source_start == 2
        assert d.sources.resolve(3).title == "FDA 1"

    @pytest.mark.asyncio
    async def test_reported_success_adds_sources_once(self, registry):
        d = make_dispatcher(registry)
        payload = {"sources": [{"title": "s1"}]}
        await d.dispatch(ev("tool_call", id="x", name="search", status="running"))
        await d.dispatch(ev("tool_call", id="x", name="search", status="success", result=payload))
        await d.dispatch(ev("tool_call", id="x", name="search", status="success", result=payload))
        assert len(d.message.sources) == 1

    @pytest.mark.asyncio
    async def test_sources_event(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("sources", sources=[{"title": "a"}, {"title": "b"}]))
        assert len(d.message.sources) == 2


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class TestPlanEvents:
    @pytest.mark.asyncio
    async def test_plan_events_routed_to_tracker(self, registry):
        plans = PlanTracker()
        listener = MagicMock(spec=TurnListener)
        d = make_dispatcher(registry, plans=plans, listener=listener)

        await d.dispatch(ev("plan_created", plan_id="p1", tasks=[{"id": "k1"}, {"id": "k2"}]))
        await d.dispatch(ev("task_complete", plan_id="p1", task_id="k1", status="failed"))
        await d.dispatch(ev("plan_complete", plan_id="p1"))

        assert plans.plan.get_task("k1").status == TaskStatus.FAILED
        assert plans.plan.get_task("k2").status == TaskStatus.PENDING
        assert "(1 failed)" in plans.plan.summary
        assert listener.on_plan_update.call_count == 3

    @pytest.mark.asyncio
    async def test_task_event_without_plan_ignored(self, registry):
        listener = MagicMock(spec=TurnListener)
        d = make_dispatcher(registry, listener=listener)
        await d.dispatch(ev("task_start", task_id="k1"))
        listener.on_plan_update.assert_not_called()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_in_flight_tool_finishes_after_cancel(self, registry):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_search():
            started.set()
            await release.wait()
            return {"sources": [{"title": "late"}]}

        registry.register("search_guidelines", slow_search)
        sender = AsyncMock()
        d = make_dispatcher(registry, send_tool_result=sender)

        await d.dispatch(ev("content", delta="Searching"))
        task = asyncio.ensure_future(d.dispatch(ev("tool_result_request", id="t1", name="search_guidelines")))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        d.cancel()
        assert d.state == TurnState.CANCELLED
        assert d.message.content == "Searching"

        release.set()
        await d.drain()

        inv = d.message.tool_invocations[0]
        assert inv.status == ToolStatus.SUCCESS
        assert d.message.sources == []
        sender.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fail_does_not_override_cancel(self, registry):
        d = make_dispatcher(registry)
        d.cancel()
        d.fail("late error")
        assert d.state == TurnState.CANCELLED


# ---------------------------------------------------------------------------
# Malformed Frames
# ---------------------------------------------------------------------------


class TestMalformedFrames:
    @pytest.mark.asyncio
    async def test_bad_plan_frame_does_not_abort_turn(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("plan_created", plan_id="p1", status="active", tasks=[{"id": "k1", "status": "todo"}]))
        await d.dispatch(ev("content", delta="Still here"))
        assert await d.dispatch(ev("done")) == TurnState.FINALIZING
        assert d.message.content == "Still here"
        assert d.plans.plan.get_task("k1").status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_handler_failure_logged_and_skipped(self, registry, caplog):
        plans = MagicMock(spec=PlanTracker)
        plans.handle.side_effect = TypeError("bad payload")
        d = make_dispatcher(registry, plans=plans)

        with caplog.at_level("ERROR", logger="docagent.dispatcher"):
            state = await d.dispatch(ev("task_start", task_id="k1"))
        await d.dispatch(ev("content", delta="ok"))

        assert state == TurnState.STREAMING
        assert "Failed to apply 'task_start' event" in caplog.text
        assert d.content == "ok"

    @pytest.mark.asyncio
    async def test_null_delta_ignored(self, registry):
        d = make_dispatcher(registry)
        await d.dispatch(ev("content", delta=None))
        await d.dispatch(ev("content", delta="text"))
        await d.dispatch(ev("done"))
        assert d.message.content == "text"
