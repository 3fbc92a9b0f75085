"""
DocAgent SDK - Input validation helpers.

Checks applied to user input and configuration before any request is made.
"""

import re
from typing import Any, Optional

from .exceptions import ValidationError as SDKValidationError
from .models import SessionMode

MAX_MESSAGE_LENGTH = 32000


class InputValidationError(SDKValidationError):
    """Raised when input validation fails before making a backend request."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message, status_code=None, response=None)
        self.field = field
        self.value = value


ValidationError = InputValidationError


def validate_required(value: Any, field_name: str) -> None:
    """Validate that a required field is not None or empty."""
    if value is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{field_name} cannot be empty", field=field_name, value=value)


def validate_string_length(
    value: str,
    field_name: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> None:
    """Validate string length constraints."""
    if value is None:
        return

    if min_length is not None and len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters",
            field=field_name,
            value=value,
        )

    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value,
        )


def validate_url(value: str, field_name: str) -> None:
    """Validate URL format."""
    if value is None:
        return

    url_pattern = re.compile(
        r"^https?://"
        r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|"
        r"localhost|"
        r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"
        r"(?::\d+)?"
        r"(?:/?|[/?]\S+)$",
        re.IGNORECASE,
    )

    if not url_pattern.match(value):
        raise ValidationError(f"{field_name} must be a valid URL", field=field_name, value=value)


def validate_mode(value: Any, field_name: str = "mode") -> SessionMode:
    """Validate and coerce a session mode."""
    try:
        return SessionMode(value)
    except ValueError:
        allowed = ", ".join(m.value for m in SessionMode)
        raise ValidationError(f"{field_name} must be one of: {allowed}", field=field_name, value=value)


def validate_message(text: str, field_name: str = "message") -> str:
    """Validate user input for a chat turn and return it stripped."""
    validate_required(text, field_name)
    if not isinstance(text, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name, value=text)
    text = text.strip()
    validate_string_length(text, field_name, max_length=MAX_MESSAGE_LENGTH)
    return text
