"""
Tests for SSE frame decoding.
"""

import pytest

from docagent.streaming import SSEEvent, SSEFrameDecoder, aiter_events, iter_events

STREAM = (
    'event: thinking\n'
    'data: {"content": "Looking at the document"}\n'
    '\n'
    'event: content\n'
    'data: {"delta": "Héllo "}\n'
    'data: {"delta": "wörld ✓"}\n'
    '\n'
    'event: tool_result_request\n'
    'data: {"id": "t1", "name": "insert_text", "params": {"text": "## Scope"}}\n'
    '\n'
    'event: done\n'
    'data: {}\n'
).encode("utf-8")


def _pairs(events):
    return [(e.type, e.data) for e in events]


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class TestSSEEvent:
    def test_from_raw_parses_json(self):
        event = SSEEvent.from_raw("content", '{"delta": "x"}')
        assert event.type == "content"
        assert event.data == {"delta": "x"}
        assert event.raw == '{"delta": "x"}'

    def test_from_raw_malformed_returns_none(self):
        assert SSEEvent.from_raw("content", "{not json") is None

    def test_from_raw_wraps_scalars(self):
        event = SSEEvent.from_raw("content", '"hello"')
        assert event.data == {"value": "hello"}


class TestSSEFrameDecoder:
    def test_whole_stream(self):
        events = list(iter_events([STREAM]))
        assert [e.type for e in events] == ["thinking", "content", "content", "tool_result_request", "done"]
        assert events[2].data == {"delta": "wörld ✓"}

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13, 64])
    def test_chunk_boundaries_do_not_change_output(self, size):
        expected = _pairs(iter_events([STREAM]))
        assert _pairs(iter_events(_split(STREAM, size))) == expected

    def test_split_inside_multibyte_character(self):
        data = 'event: content\ndata: {"delta": "✓"}\n'.encode("utf-8")
        cut = data.index("✓".encode("utf-8")) + 1
        events = list(iter_events([data[:cut], data[cut:]]))
        assert events[0].data == {"delta": "✓"}

    def test_event_type_persists_across_frames(self):
        data = 'event: content\ndata: {"delta": "a"}\n\ndata: {"delta": "b"}\n'
        events = list(iter_events([data]))
        assert [e.type for e in events] == ["content", "content"]

    def test_malformed_data_is_dropped(self, caplog):
        data = 'event: content\ndata: {"delta": \ndata: {"delta": "ok"}\n'
        with caplog.at_level("WARNING", logger="docagent.streaming"):
            events = list(iter_events([data]))
        assert _pairs(events) == [("content", {"delta": "ok"})]
        assert "malformed" in caplog.text

    def test_trailing_line_flushed_at_end(self):
        decoder = SSEFrameDecoder()
        assert decoder.feed('event: done\ndata: {"ok": true}') == []
        events = decoder.flush()
        assert _pairs(events) == [("done", {"ok": True})]

    def test_crlf_line_endings(self):
        data = 'event: content\r\ndata: {"delta": "x"}\r\n\r\n'
        assert _pairs(iter_events([data])) == [("content", {"delta": "x"})]

    def test_comments_and_empty_data_ignored(self):
        data = ': keepalive\nevent: status\ndata:\nid: 4\ndata: {"message": "busy"}\n'
        assert _pairs(iter_events([data])) == [("status", {"message": "busy"})]

    def test_default_event_type(self):
        events = list(iter_events(['data: {"x": 1}\n']))
        assert events[0].type == "message"

    def test_text_chunks_accepted(self):
        events = list(iter_events([STREAM.decode("utf-8")]))
        assert len(events) == 5


class TestAsyncDecoding:
    @pytest.mark.asyncio
    async def test_aiter_events_matches_sync(self):
        async def chunks():
            for chunk in _split(STREAM, 4):
                yield chunk

        events = [e async for e in aiter_events(chunks())]
        assert _pairs(events) == _pairs(iter_events([STREAM]))
