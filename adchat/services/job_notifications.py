from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from adchat.config import settings
from adchat.domain.jobs import JobType
from adchat.services.job_poller import JobPoller, PollEvent, PollEventKind
from adchat.services.video_chat_client import VideoChatClient

logger = logging.getLogger(__name__)

_FAILURE_TITLES = {
    JobType.scraping: "Scraping",
    JobType.ad_generation: "Ad generation",
    JobType.video_generation: "Video generation",
}


class NotificationType(str, Enum):
    success = "success"
    error = "error"


@dataclass(frozen=True)
class NotificationAction:
    label: str
    url: str
    state: dict[str, Any] | None = None


@dataclass(frozen=True)
class JobNotification:
    id: str
    type: NotificationType
    title: str
    message: str
    job_type: JobType
    job_id: str
    created_at: float
    action: NotificationAction | None = None
    result: dict[str, Any] | None = None


@dataclass
class TrackedJob:
    job_id: str
    job_type: JobType
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: float = 0.0


class JobNotificationCenter:
    """Tracks background jobs and turns their terminal states into notifications.

    Each tracked job gets its own poll loop against the generic job status endpoint.
    Notifications expire after ``ttl_seconds`` unless dismissed earlier.
    """

    def __init__(
        self,
        *,
        client: VideoChatClient,
        poller: JobPoller | None = None,
        ttl_seconds: float | None = None,
        stale_after_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.poller = poller or JobPoller()
        self.ttl_seconds = float(settings.JOB_NOTIFICATION_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.stale_after_seconds = float(
            settings.JOB_TRACKING_STALE_AFTER_SECONDS if stale_after_seconds is None else stale_after_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, TrackedJob] = {}
        self._notifications: list[JobNotification] = []

    def track_job(
        self,
        job_id: str,
        job_type: JobType | str,
        metadata: dict[str, Any] | None = None,
    ) -> TrackedJob:
        if not job_id:
            raise ValueError("job_id is required to track a job")
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None:
                return existing
            tracked = TrackedJob(
                job_id=job_id,
                job_type=JobType(job_type),
                metadata=dict(metadata or {}),
                started_at=self._clock(),
            )
            self._jobs[job_id] = tracked

        logger.info("Tracking %s job %s", tracked.job_type.value, job_id)
        self.poller.start(
            job_id,
            lambda polled_id: self.client.get_job_status(job_id=polled_id),
            on_event=lambda event: self._on_event(tracked, event),
        )
        return tracked

    def remove_job(self, job_id: str) -> bool:
        with self._lock:
            tracked = self._jobs.pop(job_id, None)
        self.poller.cancel(job_id)
        return tracked is not None

    def clear(self) -> None:
        with self._lock:
            job_ids = list(self._jobs)
            self._jobs.clear()
            self._notifications.clear()
        for job_id in job_ids:
            self.poller.cancel(job_id)

    def active_jobs(self) -> list[TrackedJob]:
        with self._lock:
            return list(self._jobs.values())

    def notifications(self, now: float | None = None) -> list[JobNotification]:
        current = self._clock() if now is None else now
        with self._lock:
            self._notifications = [
                item for item in self._notifications if current - item.created_at < self.ttl_seconds
            ]
            return list(self._notifications)

    def dismiss(self, notification_id: str) -> bool:
        with self._lock:
            remaining = [item for item in self._notifications if item.id != notification_id]
            dismissed = len(remaining) != len(self._notifications)
            self._notifications = remaining
        return dismissed

    def prune_stale(self, now: float | None = None) -> list[str]:
        current = self._clock() if now is None else now
        with self._lock:
            stale = [
                job_id
                for job_id, tracked in self._jobs.items()
                if current - tracked.started_at > self.stale_after_seconds
            ]
            for job_id in stale:
                del self._jobs[job_id]
        for job_id in stale:
            logger.info("Dropping stale job %s", job_id)
            self.poller.cancel(job_id)
        return stale

    def _on_event(self, tracked: TrackedJob, event: PollEvent) -> None:
        if event.kind == PollEventKind.progress:
            return
        with self._lock:
            if self._jobs.get(tracked.job_id) is not tracked:
                return
            del self._jobs[tracked.job_id]

        if event.kind == PollEventKind.completed:
            result = getattr(event.status, "result_data", None) or {}
            notification = self._completion_notification(tracked, result)
        elif event.kind == PollEventKind.failed:
            state = getattr(event.status, "status", "failed")
            title = _FAILURE_TITLES.get(tracked.job_type, "Job")
            notification = self._notification(
                tracked,
                type=NotificationType.error,
                title=f"{title} {'cancelled' if state == 'cancelled' else 'failed'}",
                message=event.reason or "An error occurred during processing. Please try again.",
            )
        else:
            notification = self._notification(
                tracked,
                type=NotificationType.error,
                title="Job not found",
                message="The job could not be found. It may have been cancelled or expired.",
            )

        with self._lock:
            self._notifications.append(notification)
        logger.info("Job %s finished with %s notification", tracked.job_id, notification.type.value)

    def _completion_notification(self, tracked: TrackedJob, result: dict[str, Any]) -> JobNotification:
        metadata = tracked.metadata
        product_id = result.get("product_id") or metadata.get("product_id")
        brand_id = result.get("brand_id") or metadata.get("brand_id")
        product_action = (
            NotificationAction(
                label="View Product",
                url=f"/product/{product_id}",
                state={"preserveBrand": brand_id} if brand_id else None,
            )
            if product_id
            else None
        )

        if tracked.job_type == JobType.scraping:
            name = result.get("product_name") or result.get("title") or "Unknown"
            return self._notification(
                tracked,
                type=NotificationType.success,
                title="Product scraped successfully",
                message=f'Product "{name}" has been added to your brand.',
                action=product_action,
                result=result,
            )

        if tracked.job_type == JobType.ad_generation:
            count = len(result.get("ads") or result.get("generated_images") or [])
            suffix = f' for "{result["product_name"]}"' if result.get("product_name") else ""
            return self._notification(
                tracked,
                type=NotificationType.success,
                title="Ads generated successfully",
                message=f"{count} ad{'' if count == 1 else 's'} generated{suffix}.",
                action=product_action or NotificationAction(label="View All Ads", url="/generated-ads"),
                result=result,
            )

        product_name = metadata.get("product_name") or result.get("product_name") or "your product"
        conversation_id = result.get("conversation_id") or metadata.get("conversation_id")
        action = product_action
        if action is None and conversation_id:
            action = NotificationAction(
                label="Open Video Chat",
                url="/video-generation",
                state={"openConversation": conversation_id},
            )
        return self._notification(
            tracked,
            type=NotificationType.success,
            title="Video generated successfully",
            message=f'Your video for "{product_name}" is ready to view.',
            action=action,
            result=result,
        )

    def _notification(
        self,
        tracked: TrackedJob,
        *,
        type: NotificationType,
        title: str,
        message: str,
        action: NotificationAction | None = None,
        result: dict[str, Any] | None = None,
    ) -> JobNotification:
        return JobNotification(
            id=f"notification-{uuid.uuid4().hex}",
            type=type,
            title=title,
            message=message,
            job_type=tracked.job_type,
            job_id=tracked.job_id,
            created_at=self._clock(),
            action=action,
            result=result,
        )
