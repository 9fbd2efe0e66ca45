"""Error taxonomy for the chat core."""

from __future__ import annotations

DEFAULT_MAX_LENGTH = 10_000

# Human-readable messages for each validation reason
VALIDATION_DETAILS = {
    "empty": "Message cannot be empty",
    "too long": "Message is too long (maximum {max_length:,} characters)",
    "unsafe content": "Message contains potentially unsafe content",
}


def describe_validation(reason: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Message for a validation reason, with the length limit filled in."""
    template = VALIDATION_DETAILS.get(reason)
    if template is None:
        return reason
    return template.format(max_length=max_length)


class ChatlineError(Exception):
    """Base class for errors raised by the chat core."""


class ValidationError(ChatlineError):
    """User input failed validation. Never retried automatically."""

    def __init__(self, reason: str, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail or describe_validation(reason)
        super().__init__(self.detail)


class NotFoundError(ChatlineError):
    """No active session exists for the conversation identifier."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ProviderError(ChatlineError):
    """The completion provider failed (network, auth, quota, bad response)."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
