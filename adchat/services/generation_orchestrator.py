from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from adchat.config import settings
from adchat.domain.conversations import Conversation
from adchat.domain.jobs import Artifact, ArtifactScope, GenerationJob, JobProgress, JobState
from adchat.errors import (
    GenerationFailedError,
    JobExpiredError,
    VideoChatRequestError,
    classify_length_rejection,
)
from adchat.schemas.video_chat import KNOWN_JOB_STATUSES, GenerateVideoIn, GenerationPromptIn, JobStatusOut
from adchat.services.artifact_reconciler import ArtifactReconciler
from adchat.services.conversation_controller import ConversationController, FinalReply
from adchat.services.job_poller import JobPoller, PollEvent, PollEventKind, PollHandle
from adchat.services.video_chat_client import VideoChatClient

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    job: GenerationJob
    artifacts: list[Artifact] = field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.job.state == JobState.completed and self.error is None


ProgressCallback = Callable[[GenerationJob], None]
TerminalCallback = Callable[[GenerationOutcome], None]


class GenerationOrchestrator:
    """Turns a finalized conversation into a generation job and follows it to the end.

    Progress and terminal callbacks run on the poll thread of the job. On completion the
    conversation's artifacts are pulled before ``on_terminal`` is called.
    """

    def __init__(
        self,
        *,
        client: VideoChatClient,
        controller: ConversationController,
        reconciler: ArtifactReconciler,
        poller: JobPoller | None = None,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.controller = controller
        self.reconciler = reconciler
        self.poller = poller or JobPoller()
        # How long a settled job and its outcome stay readable before they are dropped.
        self.retention_seconds = float(
            settings.SETTLED_JOB_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, GenerationJob] = {}
        self._outcomes: dict[str, GenerationOutcome] = {}
        self._finished: dict[str, threading.Event] = {}
        self._settled_at: dict[str, float] = {}
        self._owned: dict[str, set[str]] = {}

    def submit(
        self,
        conversation: Conversation,
        final_reply: FinalReply | str,
        *,
        fallback_reference_image_url: str = "",
    ) -> GenerationJob:
        brief = final_reply.text if isinstance(final_reply, FinalReply) else str(final_reply or "")
        if not brief.strip():
            raise ValueError("A generation brief is required to submit a job")

        payload = GenerateVideoIn(
            sora_prompt=GenerationPromptIn(prompt=brief, duration=conversation.settings.duration_seconds),
            reference_image_url=conversation.reference_image_url or fallback_reference_image_url or "",
            provider=conversation.settings.provider.value,
        )
        try:
            response = self.client.submit_generation_job(
                brand_id=conversation.scope.brand_id,
                product_id=conversation.scope.product_id,
                conversation_id=conversation.id,
                payload=payload,
            )
        except VideoChatRequestError as exc:
            classified = classify_length_rejection(exc)
            if classified is exc:
                raise
            raise classified from exc

        job = GenerationJob(
            id=response.job_id,
            conversation_id=conversation.id,
            scope=ArtifactScope(
                brand_id=conversation.scope.brand_id,
                product_id=conversation.scope.product_id,
                conversation_id=conversation.id,
            ),
        )
        with self._lock:
            self._prune_settled()
            self._jobs[job.id] = job
        logger.info(
            "Submitted generation job %s for conversation %s (provider=%s, duration=%s)",
            job.id,
            conversation.id,
            payload.provider,
            conversation.settings.duration_seconds,
        )
        return job

    def generate(
        self,
        conversation: Conversation,
        *,
        text: str | None = None,
        fallback_reference_image_url: str = "",
    ) -> GenerationJob:
        final_reply = self.controller.finalize(conversation, text)
        return self.submit(conversation, final_reply, fallback_reference_image_url=fallback_reference_image_url)

    def watch(
        self,
        job: GenerationJob,
        on_progress: ProgressCallback | None = None,
        on_terminal: TerminalCallback | None = None,
    ) -> PollHandle:
        if job.is_terminal:
            raise ValueError(f"Job {job.id} is already {job.state.value}")

        finished = threading.Event()

        def handle_event(event: PollEvent) -> None:
            if event.kind == PollEventKind.progress:
                _apply_status(job, event.status)
                if on_progress is not None:
                    on_progress(job)
                return
            try:
                outcome = self._settle(job, event)
                if on_terminal is not None:
                    on_terminal(outcome)
            finally:
                finished.set()

        with self._lock:
            self._prune_settled()
            self._jobs[job.id] = job
            self._outcomes.pop(job.id, None)
            self._settled_at.pop(job.id, None)
            self._finished[job.id] = finished
            if job.conversation_id:
                self._owned.setdefault(job.conversation_id, set()).add(job.id)

        return self.poller.start(
            job.id,
            lambda job_id: self.client.get_video_job_status(job_id=job_id),
            on_event=handle_event,
        )

    def wait_for(self, job: GenerationJob, timeout: float | None = None) -> list[Artifact]:
        """Block until a watched job settles and return its artifacts."""
        with self._lock:
            finished = self._finished.get(job.id)
        if finished is None:
            raise ValueError(f"Job {job.id} is not being watched")
        if not finished.wait(timeout):
            raise TimeoutError(f"Job {job.id} did not finish within {timeout} seconds")

        with self._lock:
            outcome = self._outcomes.get(job.id)
        if outcome is None:
            raise GenerationFailedError(f"Job {job.id} ended without a recorded outcome", job_id=job.id)
        if outcome.job.state == JobState.expired:
            raise JobExpiredError(job.id, not_found_count=outcome.job.consecutive_not_found_count)
        if outcome.job.state != JobState.completed:
            raise GenerationFailedError(
                outcome.error or f"Job {job.id} {outcome.job.state.value}",
                job_id=job.id,
                state=outcome.job.state.value,
            )
        if outcome.error:
            raise GenerationFailedError(outcome.error, job_id=job.id, state=outcome.job.state.value)
        return outcome.artifacts

    def job(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            self._prune_settled()
            return self._jobs.get(job_id)

    def outcome(self, job_id: str) -> GenerationOutcome | None:
        with self._lock:
            self._prune_settled()
            return self._outcomes.get(job_id)

    def tracked_job_ids(self) -> list[str]:
        with self._lock:
            self._prune_settled()
            return list(self._jobs)

    def close(self, conversation_id: str) -> int:
        """Cancel every poll owned by the conversation. Returns how many were running."""
        with self._lock:
            job_ids = self._owned.pop(conversation_id, set())
        cancelled = sum(1 for job_id in job_ids if self.poller.cancel(job_id))
        self._release(job_ids)
        if cancelled:
            logger.info("Cancelled %s job poll(s) for conversation %s", cancelled, conversation_id)
        return cancelled

    def shutdown(self) -> None:
        with self._lock:
            job_ids = set().union(*self._owned.values())
            self._owned.clear()
        self.poller.cancel_all()
        self._release(job_ids)

    def _release(self, job_ids: set[str]) -> None:
        # Unblocks waiters of jobs that will no longer be followed and lets them age out.
        now = self._clock()
        with self._lock:
            for job_id in job_ids:
                finished = self._finished.get(job_id)
                if finished is not None:
                    finished.set()
                self._settled_at.setdefault(job_id, now)

    def _prune_settled(self) -> None:
        cutoff = self._clock() - self.retention_seconds
        for job_id in [job_id for job_id, settled_at in self._settled_at.items() if settled_at <= cutoff]:
            del self._settled_at[job_id]
            self._jobs.pop(job_id, None)
            self._outcomes.pop(job_id, None)
            self._finished.pop(job_id, None)

    def _settle(self, job: GenerationJob, event: PollEvent) -> GenerationOutcome:
        outcome = GenerationOutcome(job=job)
        if event.kind == PollEventKind.completed:
            _apply_status(job, event.status)
            job.state = JobState.completed
            if job.scope is not None:
                try:
                    outcome.artifacts = self.reconciler.pull(job.scope)
                except VideoChatRequestError as exc:
                    logger.warning("Job %s completed but artifacts could not be fetched: %s", job.id, exc)
                    outcome.error = f"Artifacts could not be fetched: {exc}"
        elif event.kind == PollEventKind.failed:
            _apply_status(job, event.status)
            if job.state not in (JobState.failed, JobState.cancelled):
                job.state = JobState.failed
            job.error_message = event.reason
            outcome.error = event.reason
        else:
            job.state = JobState.expired
            job.consecutive_not_found_count = event.not_found_count
            job.error_message = str(JobExpiredError(job.id, not_found_count=event.not_found_count))
            outcome.error = job.error_message

        with self._lock:
            self._outcomes[job.id] = outcome
            self._settled_at[job.id] = self._clock()
            owned = self._owned.get(job.conversation_id or "")
            if owned is not None:
                owned.discard(job.id)
                if not owned:
                    del self._owned[job.conversation_id]
        logger.info("Job %s settled as %s", job.id, job.state.value)
        return outcome


def _apply_status(job: GenerationJob, status: JobStatusOut | None) -> None:
    if status is None:
        return
    if status.status in KNOWN_JOB_STATUSES:
        job.state = JobState(status.status)
    else:
        job.state = JobState.processing
    job.consecutive_not_found_count = 0
    if status.progress_data is not None:
        job.progress = JobProgress(
            percentage=status.progress_data.percentage,
            current_step=status.progress_data.current_step,
            completed_units=status.progress_data.completed,
            total_units=status.progress_data.total,
        )
    if status.result_data is not None:
        job.result = status.result_data
