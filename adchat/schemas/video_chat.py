from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


KNOWN_JOB_STATUSES = ("queued", "processing", "completed", "failed", "cancelled")
PROVIDER = Literal["openai", "kie", "kie_story"]


class VideoConversationCreateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reference_image_url: str = ""
    duration: int | None = Field(default=None, ge=1)
    provider: PROVIDER | None = None
    platform: Literal["tiktok", "snapchat", "facebook", "youtube"] | None = None
    aspect_ratio: Literal["9:16", "16:9"] | None = None
    language: str | None = None


class VideoConversationCreateOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation_id: str | None = None
    id: str | None = None

    @model_validator(mode="after")
    def _normalize_conversation_id(self) -> "VideoConversationCreateOut":
        if self.conversation_id is None and self.id is not None:
            self.conversation_id = self.id
        if not self.conversation_id:
            raise ValueError("Conversation response is missing conversation_id")
        return self


class VideoMessageIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str
    finish: bool = False


class VideoMessageOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: str | None = None

    @model_validator(mode="after")
    def _require_response(self) -> "VideoMessageOut":
        if not (self.response or "").strip():
            raise ValueError("No response text received from the assistant")
        return self


class ConversationMessageOut(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "message_id", "messageId"))
    role: str
    content: str = Field(default="", validation_alias=AliasChoices("content", "text"))
    timestamp: datetime | None = None
    image_url: str | None = Field(default=None, validation_alias=AliasChoices("imageUrl", "image_url"))


class VideoConversationOut(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    conversation_id: str | None = None
    messages: list[ConversationMessageOut] = Field(default_factory=list)
    reference_image_url: str | None = None
    current_image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("currentImageUrl", "current_image_url")
    )
    duration: int | None = None
    provider: str | None = None
    platform: str | None = None
    aspect_ratio: str | None = None
    language: str | None = None
    video_status: str | None = None
    video_url: str | None = None

    def stored_settings(self) -> dict[str, Any]:
        return {
            "duration": self.duration,
            "provider": self.provider,
            "platform": self.platform,
            "aspect_ratio": self.aspect_ratio,
            "language": self.language,
        }


class VideoConversationSummaryOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    message_count: int | None = None
    duration: int | None = None
    provider: str | None = None
    platform: str | None = None
    aspect_ratio: str | None = None
    language: str | None = None
    video_status: str | None = None
    video_url: str | None = None


class VideoConversationListOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversations: list[VideoConversationSummaryOut] = Field(default_factory=list)


class GenerationPromptIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt: str
    duration: int | None = None


class GenerateVideoIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sora_prompt: GenerationPromptIn
    sora_analysis: str = ""
    reference_image_url: str = ""
    provider: PROVIDER


class GenerateVideoOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job_id: str


class JobProgressOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    percentage: float | None = None
    current_step: str | None = None
    completed: int | None = None
    total: int | None = None

    @field_validator("percentage")
    @classmethod
    def _clamp_percentage(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return min(max(value, 0.0), 100.0)


class JobStatusOut(BaseModel):
    """Status of a polled job.

    Video jobs report ``progress_percentage``/``current_step`` at the top level, generic jobs
    nest them under ``progress_data``. Both normalize into ``progress_data``.
    """

    model_config = ConfigDict(extra="ignore")

    job_id: str | None = Field(default=None, validation_alias=AliasChoices("job_id", "id"))
    # Statuses outside KNOWN_JOB_STATUSES are kept verbatim and treated as still running.
    status: str
    progress_percentage: float | None = None
    current_step: str | None = None
    progress_data: JobProgressOut | None = None
    result_data: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("result_data", "result")
    )
    error_data: dict[str, Any] | None = None
    error: str | None = None
    message: str | None = None
    video_url: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _normalize_progress(self) -> "JobStatusOut":
        if self.progress_data is None and (self.progress_percentage is not None or self.current_step):
            self.progress_data = JobProgressOut(
                percentage=self.progress_percentage,
                current_step=self.current_step,
            )
        return self

    @property
    def error_message(self) -> str | None:
        if self.error_data and isinstance(self.error_data.get("message"), str):
            return self.error_data["message"]
        return self.error or (self.message if self.status in ("failed", "cancelled") else None)


class ConversationVideoOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "video_id"))
    job_id: str | None = None
    video_url: str | None = None
    created_at: datetime | None = None
    is_latest: bool | None = None


class ConversationVideosOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    videos: list[ConversationVideoOut] = Field(default_factory=list)


class ProductAdOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "ad_id"))
    job_id: str | None = None
    image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("image_url", "firebase_url", "url")
    )
    created_at: datetime | None = None


class ProductAdsOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ads: list[ProductAdOut] = Field(default_factory=list)


class VideoChatErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    request_id: str | None = None


class VideoChatErrorEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error: VideoChatErrorBody | None = None
    detail: Any = None
    message: str | None = None
