"""
DocAgent SDK - Custom exceptions for error handling.
"""

from typing import Any, Optional


class DocAgentError(Exception):
    """Base exception for all DocAgent errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class NotFoundError(DocAgentError):
    """Raised when a backend endpoint or resource is not found."""

    pass


class ValidationError(DocAgentError):
    """Raised when request validation fails."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []


class APIError(DocAgentError):
    """Raised when a backend request fails with an unexpected status."""

    pass


class AuthenticationError(DocAgentError):
    """Raised when the backend rejects the client's credentials."""

    pass


class TransportError(DocAgentError):
    """Raised when the connection to the backend fails or the stream breaks."""

    pass


class TurnInProgressError(DocAgentError):
    """Raised when a message is sent while another agent turn is still streaming."""

    pass


class ConfigError(DocAgentError):
    """Raised when client configuration cannot be loaded."""

    pass
