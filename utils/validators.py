# utils/validators.py - Input validation utilities
import re

from config import MAX_MESSAGE_LENGTH, MAX_SESSION_ID_LENGTH

_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_\-]+$')


def _validate_opaque_id(value: str, field_name: str) -> str:
    if not value or not isinstance(value, str):
        raise ValueError(f"{field_name} is required")

    value = value.strip()

    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    # Allow alphanumeric, underscore, hyphen
    if not _ID_PATTERN.match(value):
        raise ValueError(f"{field_name} contains invalid characters. Use only alphanumeric, underscore, or hyphen")

    if len(value) > MAX_SESSION_ID_LENGTH:
        raise ValueError(f"{field_name} exceeds maximum length ({MAX_SESSION_ID_LENGTH} characters)")

    return value


def validate_session_id(session_id: str) -> str:
    """
    Validate session ID format.

    Args:
        session_id: The session ID to validate

    Returns:
        Validated session ID

    Raises:
        ValueError: If session ID is invalid
    """
    return _validate_opaque_id(session_id, "session_id")


def validate_user_id(user_id: str) -> str:
    """Validate an authenticated user id handed over by the auth layer."""
    return _validate_opaque_id(user_id, "user_id")


def validate_message(message: str) -> str:
    """
    Validate a chat message.

    Raises:
        ValueError: If the message is empty or too long
    """
    if not message or not isinstance(message, str) or not message.strip():
        raise ValueError("Message cannot be empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message exceeds maximum length ({MAX_MESSAGE_LENGTH} characters)")
    return message.strip()
