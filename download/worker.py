"""Download jobs for selected slskd candidates.

A job enqueues the selected files with slskd, watches the uploader's transfer
list until every file has finished, and reports the outcome so the uploader's
reputation can be updated. Progress is published as ``DownloadEvent`` values
on an ``EventChannel``; observers (for example the library organiser) run on
the channel's own thread and never hold up the worker.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from engine.audio_quality import reputation_quality_score
from engine.errors import NetworkFailure
from engine.types import FileSelection
from engine.user_reputation import FailureOutcome, SuccessOutcome

logger = logging.getLogger(__name__)

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"
JOB_ALLOWED_STATUSES = {
    JOB_STATUS_QUEUED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
}

EVENT_QUEUED = "queued"
EVENT_PROGRESS = "progress"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_JOB_TIMEOUT_SECONDS = 60 * 60


@dataclass(frozen=True)
class DownloadEvent:
    kind: str
    task_id: str
    username: str
    directory: str
    files_total: int = 0
    files_done: int = 0
    bytes_transferred: int = 0
    error: str | None = None


class DownloadObserver(Protocol):
    def on_event(self, event: DownloadEvent) -> None:
        """Receive one download event."""


class EventChannel:
    """Fan-out of download events to observers on a dedicated thread."""

    _STOP = object()

    def __init__(self) -> None:
        self._observers: list[DownloadObserver] = []
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def subscribe(self, observer: DownloadObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def publish(self, event: DownloadEvent) -> None:
        self._ensure_thread()
        self._queue.put_nowait(event)

    def _ensure_thread(self) -> None:
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._dispatch, name="download-events", daemon=True)
                self._thread.start()

    def _dispatch(self) -> None:
        while True:
            event = self._queue.get()
            if event is self._STOP:
                return
            with self._lock:
                observers = list(self._observers)
            for observer in observers:
                try:
                    observer.on_event(event)
                except Exception:
                    logger.exception("download observer failed event=%s task_id=%s", event.kind, event.task_id)

    def close(self, timeout: float | None = 5.0) -> None:
        """Deliver everything published so far, then stop the dispatcher."""
        with self._lock:
            thread = self._thread
        if thread is None:
            return
        self._queue.put_nowait(self._STOP)
        thread.join(timeout)


@dataclass
class DownloadJob:
    task_id: str
    username: str
    selection: FileSelection
    handle: Any = None
    status: str = JOB_STATUS_QUEUED
    error: str | None = None
    bytes_transferred: int = 0


def _default_wait(seconds: float, stop_event: threading.Event | None) -> bool:
    if stop_event is not None:
        return stop_event.wait(seconds)
    time.sleep(seconds)
    return False


class DownloadWorker:
    """Enqueue selected files with slskd and follow them to completion."""

    def __init__(
        self,
        client,
        *,
        events: EventChannel | None = None,
        on_outcome: Callable[[str, Any], Any] | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float, threading.Event | None], bool] = _default_wait,
    ) -> None:
        self.client = client
        self.events = events or EventChannel()
        self.on_outcome = on_outcome
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.wait = wait

    def _publish(self, job: DownloadJob, kind: str, *, files_done: int = 0) -> None:
        self.events.publish(
            DownloadEvent(
                kind=kind,
                task_id=job.task_id,
                username=job.username,
                directory=job.selection.directory,
                files_total=len(job.selection.files),
                files_done=files_done,
                bytes_transferred=job.bytes_transferred,
                error=job.error,
            )
        )

    def enqueue(self, task_id: str, username: str, selection: FileSelection) -> DownloadJob:
        """Hand the selection to slskd. Raises ``NetworkFailure`` when slskd refuses."""
        job = DownloadJob(task_id=task_id, username=username, selection=selection)
        job.handle = self.client.enqueue_download(username, selection.files)
        logger.info(
            "download enqueued task_id=%s username=%s directory=%s files=%s",
            task_id,
            username,
            selection.directory,
            len(selection.files),
        )
        self._publish(job, EVENT_QUEUED)
        return job

    def start(self, task_id: str, username: str, selection: FileSelection, stop_event=None) -> DownloadJob:
        """Enqueue, then watch the transfer on a background thread."""
        job = self.enqueue(task_id, username, selection)
        threading.Thread(target=self.watch, args=(job, stop_event), name=f"download-{task_id}", daemon=True).start()
        return job

    def watch(self, job: DownloadJob, stop_event: threading.Event | None = None) -> dict[str, Any]:
        """Poll slskd until every file of ``job`` has finished.

        Returns a dict with ``status`` (``completed``, ``failed`` or
        ``cancelled``) and ``error``.
        """
        deadline = self.clock() + self.timeout_seconds
        last_done = -1
        while True:
            try:
                transfers = self.client.get_user_transfers(job.username)
            except NetworkFailure as exc:
                logger.warning("download status check failed task_id=%s error=%s", job.task_id, exc)
                transfers = None

            if transfers is not None:
                files = transfers.for_handle(job.handle)
                job.bytes_transferred = sum(f.bytes_transferred for f in files)
                done = [f for f in files if f.finished]
                if len(done) != last_done:
                    last_done = len(done)
                    self._publish(job, EVENT_PROGRESS, files_done=len(done))
                if files and len(done) == len(job.handle.filenames):
                    failed = [f for f in files if f.failed]
                    if failed:
                        return self._fail(job, f"{len(failed)} of {len(files)} transfers failed")
                    return self._complete(job, files)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return self._fail(job, "timed out waiting for transfers")
            if self.wait(min(self.poll_interval_seconds, remaining), stop_event):
                self._set_job_status(job, JOB_STATUS_CANCELLED)
                logger.info("download watch cancelled task_id=%s", job.task_id)
                return {"status": JOB_STATUS_CANCELLED, "error": None}

    def _complete(self, job: DownloadJob, files) -> dict[str, Any]:
        speeds = [f.average_speed for f in files if f.average_speed > 0]
        outcome = SuccessOutcome(
            bytes=sum(f.size or f.bytes_transferred for f in files),
            speed=sum(speeds) / len(speeds) if speeds else 0,
            quality_score=reputation_quality_score(job.selection.files),
        )
        self._set_job_status(job, JOB_STATUS_COMPLETED)
        self._report(job, outcome)
        logger.info("download completed task_id=%s username=%s bytes=%s", job.task_id, job.username, outcome.bytes)
        self._publish(job, EVENT_COMPLETED, files_done=len(files))
        return {"status": JOB_STATUS_COMPLETED, "error": None}

    def _fail(self, job: DownloadJob, error: str) -> dict[str, Any]:
        job.error = error
        self._set_job_status(job, JOB_STATUS_FAILED)
        self._report(job, FailureOutcome(reason=error))
        logger.warning("download failed task_id=%s username=%s error=%s", job.task_id, job.username, error)
        self._publish(job, EVENT_FAILED)
        return {"status": JOB_STATUS_FAILED, "error": error}

    def _report(self, job: DownloadJob, outcome) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(job.username, outcome)
        except Exception:
            logger.exception("recording download outcome failed task_id=%s username=%s", job.task_id, job.username)

    @staticmethod
    def _set_job_status(job: DownloadJob, status: str) -> None:
        if status not in JOB_ALLOWED_STATUSES:
            raise ValueError(f"unsupported job status: {status}")
        job.status = status
