"""Admission, queueing and event fan-out for merge jobs."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import os
import tempfile
import time
import uuid
from collections import deque
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sheetmerge.adapters.json_logger import JsonLogger
from sheetmerge.adapters.memory_store import InMemoryJobStore
from sheetmerge.config.settings import SheetMergeSettings, settings as default_settings
from sheetmerge.core.errors import Cancelled, JobNotFound, SheetMergeError
from sheetmerge.core.merge import default_output_name
from sheetmerge.core.models import FileRef, MergeOptions
from sheetmerge.core.naming import sanitize_filename
from sheetmerge.core.options import limits_from_settings, validate_files
from sheetmerge.ports.jobs import JobStore
from sheetmerge.service.events import CompleteEvent, ErrorEvent, EventLog, ProgressEvent, QueuedEvent
from sheetmerge.service.runner import CANCELLED_MESSAGE, WorkerHandle, WorkerRunner

UNEXPECTED_MESSAGE = "The merge failed unexpectedly."


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)


_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.ERROR},
    JobStatus.RUNNING: {JobStatus.DONE, JobStatus.ERROR},
    JobStatus.DONE: set(),
    JobStatus.ERROR: set(),
}


class CancelOutcome(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_CANCELLABLE = "not_cancellable"


@dataclass
class MergeJob:
    id: str
    files: list[FileRef]
    options: MergeOptions
    output_path: str
    filename: str
    cleanup_inputs: bool = False
    status: JobStatus = JobStatus.QUEUED
    events: EventLog = field(default_factory=EventLog)
    handle: WorkerHandle = field(default_factory=WorkerHandle)
    cancel_requested: bool = False
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    def transition(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise RuntimeError(f"job {self.id}: cannot move from {self.status.value} to {status.value}")
        self.status = status

    def payload(self) -> dict[str, Any]:
        options = self.options.to_payload()
        payload: dict[str, Any] = {
            "jobId": self.id,
            "files": [f.to_payload() for f in self.files],
            "options": options,
            "outputPath": self.output_path,
        }
        if "selectedSheets" in options:
            payload["selectedSheets"] = options["selectedSheets"]
        return payload


def output_filename(preferred: str | None, output_format: str) -> str:
    default = default_output_name(output_format)
    if not preferred:
        return default
    name = sanitize_filename(os.path.basename(preferred.strip()))
    if not name:
        return default
    suffix = f".{output_format}"
    if not name.lower().endswith(suffix):
        name = f"{os.path.splitext(name)[0] or 'merged'}{suffix}"
    return name


class MergeCoordinator:
    """Run merges in worker processes, at most ``max_workers`` at a time.

    Jobs beyond the ceiling wait in FIFO order. A finishing job hands its
    slot straight to the next waiter, so the running count never exceeds
    the ceiling. All bookkeeping happens on the event loop thread.
    """

    def __init__(
        self,
        runner: WorkerRunner,
        *,
        store: JobStore[MergeJob] | None = None,
        cfg: SheetMergeSettings | None = None,
        logger: JsonLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._runner = runner
        self._store: JobStore[MergeJob] = store if store is not None else InMemoryJobStore()
        self._cfg = cfg or default_settings
        self._logger = logger or JsonLogger("sheetmerge.coordinator")
        self._clock = clock
        self._max_workers = self._cfg.max_workers
        self._running = 0
        self._waiters: deque[asyncio.Future] = deque()
        self._evictions: dict[str, asyncio.TimerHandle] = {}

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def _output_dir(self) -> str:
        out_dir = self._cfg.output_dir or os.path.join(tempfile.gettempdir(), "sheetmerge")
        os.makedirs(out_dir, exist_ok=True)
        return out_dir

    def submit(
        self,
        files: Sequence[FileRef],
        options: MergeOptions,
        preferred_output_name: str | None = None,
        cleanup_inputs: bool = False,
    ) -> str:
        """Validate inputs, register a job and start it in the background.

        Must be called from a running event loop. Invalid inputs raise
        :class:`ValidationError` and no job is created.
        """

        loop = asyncio.get_running_loop()
        validate_files(files, limits_from_settings(self._cfg))
        job_id = uuid.uuid4().hex
        job = MergeJob(
            id=job_id,
            files=list(files),
            options=options,
            output_path=os.path.join(self._output_dir(), f"{job_id}.{options.output_format}"),
            filename=output_filename(preferred_output_name, options.output_format),
            cleanup_inputs=cleanup_inputs,
            created_at=self._clock(),
        )
        self._store.put(job_id, job)
        self._logger.info("job_submitted", job_id=job_id, mode=options.mode, files=len(job.files))
        job.task = loop.create_task(self._run(job))
        return job_id

    def get(self, job_id: str) -> MergeJob | None:
        return self._store.get(job_id)

    def _require(self, job_id: str) -> MergeJob:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFound(f"Unknown job '{job_id}'.")
        return job

    def subscribe(self, job_id: str) -> AsyncIterator[dict[str, Any]]:
        """Replay the job's events so far, then follow it until it ends."""

        return self._stream(self._require(job_id))

    async def _stream(self, job: MergeJob) -> AsyncIterator[dict[str, Any]]:
        async for event in job.events.subscribe():
            yield event.to_dict()

    async def wait(self, job_id: str) -> dict[str, Any]:
        last: dict[str, Any] = {}
        async for event in self.subscribe(job_id):
            last = event
        return last

    def cancel(self, job_id: str) -> CancelOutcome:
        job = self._store.get(job_id)
        if job is None:
            return CancelOutcome.NOT_FOUND
        if job.status.terminal:
            return CancelOutcome.NOT_CANCELLABLE
        job.cancel_requested = True
        if job.status is JobStatus.RUNNING:
            job.handle.kill()
        self._logger.info("job_cancel_requested", job_id=job_id, status=job.status.value)
        return CancelOutcome.OK

    async def _acquire(self, job: MergeJob) -> None:
        if self._running < self._max_workers and not self.queued:
            self._running += 1
            return
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        position = self.queued
        job.events.publish(QueuedEvent(position=position))
        self._logger.info("job_queued", job_id=job.id, position=position)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                self._release()
            else:
                with contextlib.suppress(ValueError):
                    self._waiters.remove(fut)
            raise

    def _release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._running -= 1

    def _on_progress(self, job: MergeJob) -> Callable[[int, str], None]:
        def _hook(pct: int, msg: str) -> None:
            if job.status is JobStatus.RUNNING:
                job.events.publish(ProgressEvent(pct=max(0, min(100, pct)), msg=msg))

        return _hook

    async def _run(self, job: MergeJob) -> None:
        log = self._logger.bind(job_id=job.id)
        try:
            await self._acquire(job)
            try:
                if job.cancel_requested:
                    raise Cancelled(CANCELLED_MESSAGE)
                job.transition(JobStatus.RUNNING)
                log.info("job_started")
                job.events.publish(ProgressEvent(pct=0, msg="Starting merge"))
                result = await self._runner.run(job.payload(), self._on_progress(job), job.handle)
            finally:
                self._release()
            job.warnings = list(result.warnings)
            job.transition(JobStatus.DONE)
            job.events.publish(
                CompleteEvent(download_ref=job.output_path, filename=job.filename, warnings=tuple(job.warnings))
            )
            log.info("job_completed", warnings=len(job.warnings), elapsed_ms=result.elapsed_ms)
        except SheetMergeError as exc:
            self._fail(job, str(exc))
            log.warn("job_failed", error=str(exc), kind=type(exc).__name__)
        except asyncio.CancelledError:
            self._fail(job, CANCELLED_MESSAGE)
            raise
        except Exception as exc:
            self._fail(job, UNEXPECTED_MESSAGE)
            log.error("job_crash", error=str(exc))
        finally:
            job.finished_at = self._clock()
            if job.cleanup_inputs:
                self._remove_inputs(job)
            self._schedule_eviction(job.id)

    def _fail(self, job: MergeJob, message: str) -> None:
        job.error = message
        if not job.status.terminal:
            job.transition(JobStatus.ERROR)
        job.events.publish(ErrorEvent(message=message))
        with contextlib.suppress(FileNotFoundError):
            os.remove(job.output_path)

    def _remove_inputs(self, job: MergeJob) -> None:
        for ref in job.files:
            try:
                os.remove(ref.path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                self._logger.warn("input_cleanup_failed", job_id=job.id, path=ref.path, error=str(exc))

    def _schedule_eviction(self, job_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._evictions[job_id] = loop.call_later(self._cfg.job_retention_seconds, self._evict, job_id)

    def _evict(self, job_id: str) -> None:
        handle = self._evictions.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        if self._store.get(job_id) is not None:
            self._store.delete(job_id)
            self._logger.debug("job_evicted", job_id=job_id)

    def evict_expired(self, now: float | None = None) -> list[str]:
        """Drop terminal jobs older than the retention period; return their ids."""

        now = self._clock() if now is None else now
        expired = [
            job.id
            for job in self._store.list()
            if job.status.terminal
            and job.finished_at is not None
            and now - job.finished_at >= self._cfg.job_retention_seconds
        ]
        for job_id in expired:
            self._evict(job_id)
        return expired

    async def aclose(self) -> None:
        pending = []
        for job in self._store.list():
            if job.task is not None and not job.task.done():
                job.cancel_requested = True
                job.handle.kill()
                job.task.cancel()
                pending.append(job.task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
