"""
DocAgent SDK - SSE frame decoding for agent turns.

The backend answers a chat request with a Server-Sent Events stream. Chunks
arrive at arbitrary byte boundaries; the decoder re-assembles lines and emits
one event per ``data:`` line, paired with the most recent ``event:`` type.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator, Optional, Union

logger = logging.getLogger("docagent.streaming")

Chunk = Union[bytes, str]


class SSEEventType(str, Enum):
    """Types of events the backend emits during an agent turn."""

    THINKING = "thinking"
    TOOL_RESULT_REQUEST = "tool_result_request"
    TOOL_CALL = "tool_call"
    CONTENT = "content"
    CHECKPOINT = "checkpoint"
    STATUS = "status"
    SOURCES = "sources"
    ERROR = "error"
    DONE = "done"
    PLAN_CREATED = "plan_created"
    PLAN_START = "plan_start"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    PLAN_PROGRESS = "plan_progress"
    PLAN_COMPLETE = "plan_complete"


@dataclass
class SSEEvent:
    """An event decoded from the SSE stream."""

    type: str
    data: dict[str, Any]
    raw: str = ""

    @classmethod
    def from_raw(cls, event_type: str, data_str: str) -> Optional["SSEEvent"]:
        """Create an SSEEvent from a raw ``data:`` payload, or None if it is not JSON."""
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError as e:
            logger.warning("Dropping malformed SSE data for event %r: %s (%s)", event_type, data_str, e)
            return None
        if not isinstance(data, dict):
            data = {"value": data}
        return cls(type=event_type, data=data, raw=data_str)


class SSEFrameDecoder:
    """
    Incremental decoder turning transport chunks into SSE events.

    Usage:
        ```python
        decoder = SSEFrameDecoder()
        async for chunk in response.aiter_bytes():
            for event in decoder.feed(chunk):
                await dispatch(event)
        for event in decoder.flush():
            await dispatch(event)
        ```
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._event_type = "message"

    def feed(self, chunk: Chunk) -> list[SSEEvent]:
        """Consume one chunk and return the events completed by it."""
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        # The last piece may be an incomplete line
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> list[SSEEvent]:
        """Process whatever is left in the buffer at end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        lines = self._buffer.split("\n")
        self._buffer = ""
        return self._parse_lines(lines)

    def _parse_lines(self, lines: list[str]) -> list[SSEEvent]:
        events = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def _parse_line(self, line: str) -> Optional[SSEEvent]:
        line = line.strip()

        if not line or line.startswith(":"):
            return None

        if line.startswith("event:"):
            self._event_type = line[6:].strip()
            return None

        if line.startswith("data:"):
            data_str = line[5:].strip()
            if not data_str:
                return None
            return SSEEvent.from_raw(self._event_type, data_str)

        return None


def iter_events(chunks: Iterable[Chunk], encoding: str = "utf-8") -> Iterator[SSEEvent]:
    """Decode a synchronous sequence of chunks into events."""
    decoder = SSEFrameDecoder(encoding)
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()


async def aiter_events(
    chunks: AsyncIterable[Chunk], encoding: str = "utf-8"
) -> AsyncIterator[SSEEvent]:
    """Decode an asynchronous sequence of chunks into events."""
    decoder = SSEFrameDecoder(encoding)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
