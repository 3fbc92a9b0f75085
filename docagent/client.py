"""
DocAgent SDK - HTTP client for the copilot backend.

Opens agent turns as SSE streams and carries the two side channels of the
protocol: tool-result acknowledgements and the stop signal.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from .config import ClientConfig
from .exceptions import (
    APIError,
    AuthenticationError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from .models import ChatRequest, ToolResultAck
from .streaming import SSEEvent, aiter_events


class AsyncDocAgentClient:
    """
    Asynchronous client for the copilot backend.

    Example:
        ```python
        async with AsyncDocAgentClient(base_url="http://localhost:8000") as client:
            request = ChatRequest(session_id="chat-1", message="Hi", mode=SessionMode.ASK)
            async for event in client.stream_turn(request):
                print(event.type, event.data)
        ```
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ClientConfig(base_url=base_url, api_key=api_key)
        if timeout is not None:
            self.config.timeout = timeout
        self.base_url = self.config.base_url

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.config.timeout,
            transport=transport,
        )

    def _handle_response(self, response: httpx.Response) -> dict:
        """Handle HTTP response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Authentication failed",
                status_code=response.status_code,
                response=_json_or_none(response),
            )
        elif response.status_code == 404:
            raise NotFoundError(
                "Resource not found",
                status_code=404,
                response=_json_or_none(response),
            )
        elif response.status_code in (400, 422):
            data = _json_or_none(response) or {}
            raise ValidationError(
                data.get("message", "Validation error"),
                errors=data.get("errors", []),
                status_code=response.status_code,
                response=data,
            )
        elif response.status_code >= 400:
            raise APIError(
                f"Backend error: {response.status_code}",
                status_code=response.status_code,
                response=_json_or_none(response),
            )

        return _json_or_none(response) or {}

    # ==================== Agent turns ====================

    @asynccontextmanager
    async def open_turn(self, request: ChatRequest) -> AsyncIterator[httpx.Response]:
        """
        POST a chat request and yield the streaming response.

        Raises:
            TransportError: If the backend cannot be reached.
            APIError: If the backend answers with a non-2xx status.
        """
        timeout = httpx.Timeout(self.config.timeout, read=self.config.stream_read_timeout)
        try:
            async with self._client.stream(
                "POST",
                self.config.chat_path,
                json=request.to_dict(),
                headers={"Accept": "text/event-stream"},
                timeout=timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._handle_response(response)
                yield response
        except httpx.TransportError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

    async def stream_turn(self, request: ChatRequest) -> AsyncIterator[SSEEvent]:
        """Open an agent turn and yield its decoded events in arrival order."""
        async with self.open_turn(request) as response:
            async for event in aiter_events(response.aiter_bytes()):
                yield event

    async def send_tool_result(self, ack: ToolResultAck) -> dict:
        """Return a locally executed tool result to the backend."""
        response = await self._client.post(self.config.tool_result_path, json=ack.to_dict())
        return self._handle_response(response)

    async def stop(self, session_id: str) -> dict:
        """Ask the backend to stop generating for a session."""
        response = await self._client.post(self.config.stop_path, json={"session_id": session_id})
        return self._handle_response(response)

    async def close(self) -> None:
        """Close the HTTP client connection."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncDocAgentClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _json_or_none(response: httpx.Response) -> Optional[dict]:
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text}
    return data if isinstance(data, dict) else {"data": data}
