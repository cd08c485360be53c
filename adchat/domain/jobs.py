from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from adchat.domain.conversations import utcnow


class JobState(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    # Assigned locally when the backend stops recognising the job id.
    expired = "expired"


TERMINAL_JOB_STATES = frozenset({JobState.completed, JobState.failed, JobState.cancelled, JobState.expired})


class JobType(str, Enum):
    scraping = "scraping"
    ad_generation = "ad_generation"
    video_generation = "video_generation"


class ArtifactKind(str, Enum):
    image = "image"
    video = "video"


@dataclass(frozen=True)
class JobProgress:
    percentage: float | None = None
    current_step: str | None = None
    completed_units: int | None = None
    total_units: int | None = None


@dataclass
class GenerationJob:
    id: str
    conversation_id: str | None = None
    scope: "ArtifactScope | None" = None
    state: JobState = JobState.queued
    progress: JobProgress | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None
    consecutive_not_found_count: int = 0
    submitted_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES


@dataclass(frozen=True)
class ArtifactScope:
    brand_id: str
    product_id: str | None = None
    conversation_id: str | None = None


@dataclass(frozen=True)
class Artifact:
    id: str
    url: str
    created_at: datetime
    kind: ArtifactKind = ArtifactKind.video
    source_job_id: str | None = None
    is_latest: bool = False
