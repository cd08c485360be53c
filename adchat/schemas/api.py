from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from adchat.domain.conversations import Conversation, Message
from adchat.domain.jobs import Artifact, GenerationJob
from adchat.services.job_notifications import JobNotification, TrackedJob


class ConversationCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: str | None = None
    reference_image_url: str | None = None
    provider: Literal["openai", "kie", "kie_story"] | None = None
    duration: int | None = Field(default=None, ge=1)
    platform: Literal["tiktok", "snapchat", "facebook", "youtube"] | None = None
    aspect_ratio: Literal["9:16", "16:9"] | None = None
    language: str | None = None

    def settings_values(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "duration": self.duration,
            "platform": self.platform,
            "aspect_ratio": self.aspect_ratio,
            "language": self.language,
        }


class MessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1)


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str | None = None
    fallback_reference_image_url: str = ""


class TrackJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(min_length=1)
    job_type: Literal["scraping", "ad_generation", "video_generation"]
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    timestamp: datetime
    image_url: str | None = None
    pending: bool = False

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            role=message.role.value,
            content=message.content,
            timestamp=message.timestamp,
            image_url=message.image_url,
            pending=message.pending,
        )


class ConversationResponse(BaseModel):
    conversation_id: str
    brand_id: str
    product_id: str | None = None
    state: str
    started: bool
    finalized: bool
    reference_image_url: str
    current_image_url: str | None = None
    last_video_url: str | None = None
    settings: dict[str, Any]
    messages: list[MessageResponse]

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationResponse":
        return cls(
            conversation_id=conversation.id,
            brand_id=conversation.scope.brand_id,
            product_id=conversation.scope.product_id,
            state=conversation.state.value,
            started=conversation.started,
            finalized=conversation.finalized,
            reference_image_url=conversation.reference_image_url,
            current_image_url=conversation.current_image_url,
            last_video_url=conversation.last_video_url,
            settings=conversation.settings.to_wire(),
            messages=[MessageResponse.from_message(message) for message in conversation.messages],
        )


class JobResponse(BaseModel):
    job_id: str
    conversation_id: str | None = None
    state: str
    percentage: float | None = None
    current_step: str | None = None
    error_message: str | None = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobResponse":
        return cls(
            job_id=job.id,
            conversation_id=job.conversation_id,
            state=job.state.value,
            percentage=job.progress.percentage if job.progress else None,
            current_step=job.progress.current_step if job.progress else None,
            error_message=job.error_message,
        )


class ArtifactResponse(BaseModel):
    id: str
    url: str
    kind: str
    created_at: datetime
    source_job_id: str | None = None
    is_latest: bool

    @classmethod
    def from_artifact(cls, artifact: Artifact) -> "ArtifactResponse":
        return cls(
            id=artifact.id,
            url=artifact.url,
            kind=artifact.kind.value,
            created_at=artifact.created_at,
            source_job_id=artifact.source_job_id,
            is_latest=artifact.is_latest,
        )


class TrackedJobResponse(BaseModel):
    job_id: str
    job_type: str
    metadata: dict[str, Any]
    started_at: float

    @classmethod
    def from_tracked(cls, tracked: TrackedJob) -> "TrackedJobResponse":
        return cls(
            job_id=tracked.job_id,
            job_type=tracked.job_type.value,
            metadata=tracked.metadata,
            started_at=tracked.started_at,
        )


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    job_type: str
    job_id: str
    created_at: float
    action: dict[str, Any] | None = None

    @classmethod
    def from_notification(cls, notification: JobNotification) -> "NotificationResponse":
        action = None
        if notification.action is not None:
            action = {
                "label": notification.action.label,
                "url": notification.action.url,
                "state": notification.action.state,
            }
        return cls(
            id=notification.id,
            type=notification.type.value,
            title=notification.title,
            message=notification.message,
            job_type=notification.job_type.value,
            job_id=notification.job_id,
            created_at=notification.created_at,
            action=action,
        )
