from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class VideoChatError(RuntimeError):
    pass


class VideoChatConfigError(VideoChatError):
    pass


@dataclass
class VideoChatRequestError(VideoChatError):
    message: str
    status_code: int | None = None
    error_code: str | None = None
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        code = f" code={self.error_code}" if self.error_code else ""
        status = f" status={self.status_code}" if self.status_code is not None else ""
        req = f" request_id={self.request_id}" if self.request_id else ""
        return f"{self.message}{status}{code}{req}".strip()


class NotFoundError(VideoChatRequestError):
    """The conversation or job does not exist on the backend (HTTP 404)."""


class TransientIOError(VideoChatRequestError):
    """Network failure, timeout, rate limit or 5xx. Safe to retry."""


class PromptTooLongError(VideoChatRequestError):
    """The backend rejected a generated brief because of its length."""


class MissingReferenceError(VideoChatError):
    """Product or reference image context required to create a conversation is absent."""


class ConversationBusyError(VideoChatError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} already has a message in flight")
        self.conversation_id = conversation_id


class GenerationFailedError(VideoChatError):
    def __init__(self, message: str, *, job_id: str, state: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.state = state


class JobExpiredError(VideoChatError):
    def __init__(self, job_id: str, *, not_found_count: int) -> None:
        super().__init__(
            f"Job {job_id} could not be found after {not_found_count} consecutive status checks. "
            "It may have been cancelled or expired."
        )
        self.job_id = job_id
        self.not_found_count = not_found_count


# Phrases the generation backend uses when it rejects a brief for length.
PROMPT_LENGTH_REJECTION_MARKERS = (
    "character",
    "5000",
    "4500",
    "video_description",
    "too long",
    "exceed",
)


def is_prompt_length_rejection(message: str | None) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in PROMPT_LENGTH_REJECTION_MARKERS)


def classify_length_rejection(exc: VideoChatRequestError) -> VideoChatRequestError:
    """Upgrade a request error to PromptTooLongError when its text matches a length rejection.

    Transient and not-found errors are returned unchanged.
    """
    if isinstance(exc, (PromptTooLongError, TransientIOError, NotFoundError)):
        return exc
    if not is_prompt_length_rejection(exc.message):
        return exc
    return PromptTooLongError(
        message=exc.message,
        status_code=exc.status_code,
        error_code=exc.error_code,
        request_id=exc.request_id,
        details=exc.details,
    )
