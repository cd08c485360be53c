from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from adchat.config import settings
from adchat.errors import NotFoundError

logger = logging.getLogger(__name__)

COMPLETED_STATES = frozenset({"completed"})
FAILED_STATES = frozenset({"failed", "cancelled"})


class PollEventKind(str, Enum):
    progress = "progress"
    completed = "completed"
    failed = "failed"
    expired = "expired"


@dataclass(frozen=True)
class PollEvent:
    kind: PollEventKind
    job_id: str
    status: Any = None
    reason: str | None = None
    not_found_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.kind != PollEventKind.progress


StatusFetcher = Callable[[str], Any]
EventHandler = Callable[[PollEvent], None]
ErrorHandler = Callable[[str, Exception], None]


def default_state_of(status: Any) -> str:
    if isinstance(status, Mapping):
        raw = status.get("state", status.get("status"))
    else:
        raw = getattr(status, "state", None)
        if raw is None:
            raw = getattr(status, "status", None)
    if isinstance(raw, Enum):
        raw = raw.value
    return str(raw or "").lower()


def default_reason_of(status: Any) -> str | None:
    if isinstance(status, Mapping):
        reason = status.get("error_message") or status.get("error") or status.get("message")
    else:
        reason = getattr(status, "error_message", None)
    return str(reason) if reason else None


class PollHandle:
    """One recurring status poll for one job id.

    The loop runs on its own thread: fetch, classify, emit, then wait for the next tick.
    ``cancel`` stops the loop; once it returns no further event is emitted. Events are
    emitted under a lock so a terminal event is delivered at most once.
    """

    def __init__(
        self,
        *,
        job_id: str,
        fetch_status: StatusFetcher,
        on_event: EventHandler,
        interval_seconds: float,
        max_consecutive_not_found: int,
        on_error: ErrorHandler | None = None,
        state_of: Callable[[Any], str] = default_state_of,
        reason_of: Callable[[Any], str | None] = default_reason_of,
        on_finish: Callable[["PollHandle"], None] | None = None,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds cannot be negative")
        if max_consecutive_not_found < 1:
            raise ValueError("max_consecutive_not_found must be at least 1")
        self.job_id = job_id
        self.interval_seconds = float(interval_seconds)
        self.max_consecutive_not_found = int(max_consecutive_not_found)
        self.consecutive_not_found = 0
        self.fetch_count = 0
        self.terminal_event: PollEvent | None = None
        self._fetch_status = fetch_status
        self._on_event = on_event
        self._on_error = on_error
        self._state_of = state_of
        self._reason_of = reason_of
        self._on_finish = on_finish
        self._stop = threading.Event()
        self._done = threading.Event()
        self._lock = threading.RLock()
        self._cancelled = False
        self._thread = threading.Thread(target=self._run, name=f"job-poll-{job_id}", daemon=True)

    def start(self) -> "PollHandle":
        self._thread.start()
        return self

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, *, wait: bool = True) -> None:
        """Stop polling. Idempotent, and a no-op after the loop ended on its own."""
        with self._lock:
            if not self._stop.is_set():
                self._cancelled = True
                self._stop.set()
        if wait and self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop has exited. Returns False on timeout."""
        return self._done.wait(timeout)

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                next_tick = time.monotonic() + self.interval_seconds
                self._tick()
                if self._stop.wait(max(0.0, next_tick - time.monotonic())):
                    break
        finally:
            self._done.set()
            if self._on_finish is not None:
                self._on_finish(self)

    def _tick(self) -> None:
        self.fetch_count += 1
        try:
            status = self._fetch_status(self.job_id)
        except NotFoundError:
            with self._lock:
                if self._stop.is_set():
                    return
                self.consecutive_not_found += 1
                if self.consecutive_not_found >= self.max_consecutive_not_found:
                    logger.info(
                        "Job %s not found after %s consecutive polls; giving up",
                        self.job_id,
                        self.consecutive_not_found,
                    )
                    self._finish(
                        PollEvent(
                            kind=PollEventKind.expired,
                            job_id=self.job_id,
                            reason="Job not found",
                            not_found_count=self.consecutive_not_found,
                        )
                    )
            return
        except Exception as exc:
            if self._stop.is_set():
                return
            logger.warning(
                "Transient error polling job %s (not_found_streak=%s): %s",
                self.job_id,
                self.consecutive_not_found,
                exc,
            )
            if self._on_error is not None:
                self._on_error(self.job_id, exc)
            return

        with self._lock:
            if self._stop.is_set():
                return
            self.consecutive_not_found = 0
            state = self._state_of(status)
            if state in COMPLETED_STATES:
                self._finish(PollEvent(kind=PollEventKind.completed, job_id=self.job_id, status=status))
            elif state in FAILED_STATES:
                self._finish(
                    PollEvent(
                        kind=PollEventKind.failed,
                        job_id=self.job_id,
                        status=status,
                        reason=self._reason_of(status) or state,
                    )
                )
            else:
                self._emit(PollEvent(kind=PollEventKind.progress, job_id=self.job_id, status=status))

    def _finish(self, event: PollEvent) -> None:
        self._stop.set()
        self.terminal_event = event
        self._emit(event)

    def _emit(self, event: PollEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Poll event handler failed for job %s (%s)", self.job_id, event.kind.value)


class JobPoller:
    """Runs at most one PollHandle per job id."""

    def __init__(
        self,
        *,
        interval_seconds: float | None = None,
        max_consecutive_not_found: int | None = None,
    ) -> None:
        self.interval_seconds = float(
            settings.JOB_POLL_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.max_consecutive_not_found = int(
            max_consecutive_not_found or settings.JOB_POLL_MAX_CONSECUTIVE_NOT_FOUND or 3
        )
        self._handles: dict[str, PollHandle] = {}
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()

    def start(
        self,
        job_id: str,
        fetch_status: StatusFetcher,
        *,
        on_event: EventHandler,
        interval_seconds: float | None = None,
        max_consecutive_not_found: int | None = None,
        on_error: ErrorHandler | None = None,
        state_of: Callable[[Any], str] = default_state_of,
        reason_of: Callable[[Any], str | None] = default_reason_of,
    ) -> PollHandle:
        if not job_id:
            raise ValueError("job_id is required to start polling")
        with self._start_lock:
            with self._lock:
                existing = self._handles.pop(job_id, None)
            if existing is not None:
                logger.info("Replacing active poll loop for job %s", job_id)
                existing.cancel()

            handle = PollHandle(
                job_id=job_id,
                fetch_status=fetch_status,
                on_event=on_event,
                interval_seconds=self.interval_seconds if interval_seconds is None else interval_seconds,
                max_consecutive_not_found=(
                    self.max_consecutive_not_found if max_consecutive_not_found is None else max_consecutive_not_found
                ),
                on_error=on_error,
                state_of=state_of,
                reason_of=reason_of,
                on_finish=self._forget,
            )
            with self._lock:
                self._handles[job_id] = handle
            return handle.start()

    def get(self, job_id: str) -> PollHandle | None:
        with self._lock:
            return self._handles.get(job_id)

    def active_job_ids(self) -> list[str]:
        with self._lock:
            return [job_id for job_id, handle in self._handles.items() if handle.active]

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()

    def _forget(self, handle: PollHandle) -> None:
        with self._lock:
            if self._handles.get(handle.job_id) is handle:
                del self._handles[handle.job_id]
