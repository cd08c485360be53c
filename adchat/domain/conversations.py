from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable


class VideoProvider(str, Enum):
    openai = "openai"
    kie = "kie"
    kie_story = "kie_story"


class AdPlatform(str, Enum):
    tiktok = "tiktok"
    snapchat = "snapchat"
    facebook = "facebook"
    youtube = "youtube"


class AspectRatio(str, Enum):
    portrait = "9:16"
    landscape = "16:9"


class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"


class ConversationState(str, Enum):
    uninitialized = "uninitialized"
    created = "created"
    started = "started"
    finalized = "finalized"


_LANGUAGE_RE = re.compile(r"^[a-z]{2}$")
_LOCAL_ID_PREFIXES = ("temp-", "ai-")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OwnerScope:
    brand_id: str
    product_id: str | None = None


@dataclass(frozen=True)
class ConversationSettings:
    provider: VideoProvider = VideoProvider.kie_story
    duration_seconds: int = 15
    platform: AdPlatform = AdPlatform.tiktok
    aspect_ratio: AspectRatio = AspectRatio.portrait
    language: str = "en"

    def __post_init__(self) -> None:
        # Accept raw wire values as well as enum members.
        object.__setattr__(self, "provider", VideoProvider(self.provider))
        object.__setattr__(self, "platform", AdPlatform(self.platform))
        object.__setattr__(self, "aspect_ratio", AspectRatio(self.aspect_ratio))
        if int(self.duration_seconds) <= 0:
            raise ValueError(f"duration_seconds must be positive, got {self.duration_seconds}")
        object.__setattr__(self, "duration_seconds", int(self.duration_seconds))
        language = (self.language or "").strip().lower()
        if not _LANGUAGE_RE.match(language):
            raise ValueError(f"language must be an ISO-639-1 code, got {self.language!r}")
        object.__setattr__(self, "language", language)

    def to_wire(self) -> dict[str, Any]:
        return {
            "duration": self.duration_seconds,
            "provider": self.provider.value,
            "platform": self.platform.value,
            "aspect_ratio": self.aspect_ratio.value,
            "language": self.language,
        }

    def overlay(self, values: dict[str, Any]) -> "ConversationSettings":
        """Return a copy with every non-empty wire value in ``values`` applied on top."""
        changes: dict[str, Any] = {}
        if values.get("duration"):
            changes["duration_seconds"] = values["duration"]
        if values.get("provider"):
            changes["provider"] = values["provider"]
        if values.get("platform"):
            changes["platform"] = values["platform"]
        if values.get("aspect_ratio"):
            changes["aspect_ratio"] = values["aspect_ratio"]
        if values.get("language"):
            changes["language"] = values["language"]
        return replace(self, **changes) if changes else self


@dataclass
class Message:
    id: str
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    image_url: str | None = None
    # Optimistic entries are shown before the backend confirms them.
    pending: bool = False

    @classmethod
    def optimistic(cls, content: str) -> "Message":
        return cls(id=f"temp-{uuid.uuid4().hex}", role=MessageRole.user, content=content, pending=True)

    @classmethod
    def local_reply(cls, content: str) -> "Message":
        return cls(id=f"ai-{uuid.uuid4().hex}", role=MessageRole.assistant, content=content)

    @property
    def is_local(self) -> bool:
        """True until the entry has been replaced by the server's copy."""
        return self.pending or self.id.startswith(_LOCAL_ID_PREFIXES)


class Conversation:
    """One generation dialogue.

    The message list is owned by ConversationController; ``messages`` hands out a snapshot.
    ``reference_image_url`` is fixed at creation and never reassigned.
    """

    def __init__(
        self,
        *,
        id: str,
        scope: OwnerScope,
        settings: ConversationSettings,
        reference_image_url: str = "",
        messages: Iterable[Message] = (),
        current_image_url: str | None = None,
        last_video_url: str | None = None,
    ) -> None:
        self.id = id
        self.scope = scope
        self.settings = settings
        self._reference_image_url = reference_image_url or ""
        self._messages: list[Message] = list(messages)
        self.current_image_url = current_image_url
        self.last_video_url = last_video_url
        self.finalize_count = 0
        self._send_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Conversation(id={self.id!r}, state={self.state.value!r}, "
            f"messages={len(self._messages)}, finalize_count={self.finalize_count})"
        )

    @property
    def reference_image_url(self) -> str:
        return self._reference_image_url

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def started(self) -> bool:
        return any(message.role == MessageRole.assistant for message in self._messages)

    @property
    def finalized(self) -> bool:
        return self.finalize_count > 0

    @property
    def state(self) -> ConversationState:
        if self.finalized:
            return ConversationState.finalized
        if self.started:
            return ConversationState.started
        return ConversationState.created

    @property
    def sending(self) -> bool:
        return self._send_lock.locked()

    def try_begin_send(self) -> bool:
        return self._send_lock.acquire(blocking=False)

    def end_send(self) -> None:
        self._send_lock.release()

    def append_message(self, message: Message) -> None:
        if any(existing.id == message.id for existing in self._messages):
            raise ValueError(f"Message id {message.id} already present in conversation {self.id}")
        self._messages.append(message)

    def discard_message(self, message_id: str) -> None:
        self._messages = [message for message in self._messages if message.id != message_id]

    def replace_messages(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)
