"""
Job Registry — trackable identities for asynchronous worker dispatches.

A WorkerJob is created when work is handed to a worker and moves exactly
once from ``running`` to a terminal status. Callers may block on a job with
``wait()``; every waiter is a one-shot future that fires on completion or is
abandoned when its own timeout expires.

Retention is bounded: terminal jobs expire after ``max_age`` seconds and the
oldest terminal jobs are evicted once the table exceeds ``max_jobs``. A job
somebody is still waiting on is never evicted.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from conductor.events import EventBus, WorkerJobEvent, emit_safely

logger = structlog.get_logger(__name__)

MAX_JOBS = 200
MAX_JOB_AGE = 24 * 60 * 60.0
DEFAULT_WAIT_TIMEOUT = 600.0

WorkerJobStatus = Literal["running", "succeeded", "failed", "canceled"]


class UnknownJobError(KeyError):
    """The job id was never created or has been pruned."""

    def __str__(self) -> str:
        return f'Unknown job "{self.args[0]}"' if self.args else "Unknown job"


class JobTimeoutError(TimeoutError):
    """wait() gave up before the job finished."""


class WorkerJobReport(BaseModel):
    """Structured summary a worker (or caller) can attach to a job."""

    summary: Optional[str] = None
    details: Optional[str] = None
    issues: Optional[list[str]] = None
    notes: Optional[str] = None


class WorkerJob(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    worker_id: str
    message: str
    session_id: Optional[str] = None
    requested_by: Optional[str] = None
    status: WorkerJobStatus = "running"
    started_at: float
    finished_at: Optional[float] = None
    duration_seconds: Optional[float] = None
    response_text: Optional[str] = None
    error: Optional[str] = None
    report: Optional[WorkerJobReport] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"


ReportInput = WorkerJobReport | dict[str, Any]


def _as_report(report: Optional[ReportInput]) -> Optional[WorkerJobReport]:
    if report is None or isinstance(report, WorkerJobReport):
        return report
    return WorkerJobReport.model_validate(report)


class WorkerJobRegistry:
    """In-memory job table with awaitable completion and bounded retention."""

    def __init__(
        self,
        *,
        max_jobs: int = MAX_JOBS,
        max_age: float = MAX_JOB_AGE,
        clock: Callable[[], float] = time.time,
        event_bus: Optional[EventBus] = None,
    ):
        self._max_jobs = max_jobs
        self._max_age = max_age
        self._clock = clock
        self._event_bus = event_bus
        # Insertion order doubles as age order for eviction.
        self._jobs: dict[str, WorkerJob] = {}
        self._waiters: dict[str, set[asyncio.Future[WorkerJob]]] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create(
        self,
        worker_id: str,
        message: str,
        *,
        session_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> WorkerJob:
        job = WorkerJob(
            worker_id=worker_id,
            message=message,
            session_id=session_id,
            requested_by=requested_by,
            started_at=self._clock(),
        )
        self._jobs[job.id] = job
        logger.info("jobs.created", job_id=job.id, worker_id=worker_id)
        self._emit(job, "created")
        self.prune()
        return job

    def get(self, job_id: str) -> Optional[WorkerJob]:
        return self._jobs.get(job_id)

    def list(self, *, worker_id: Optional[str] = None, limit: int = 50) -> list[WorkerJob]:
        """Jobs newest first, optionally for one worker, at most ``limit``."""
        limit = max(1, limit)
        items = [
            job for job in self._jobs.values()
            if worker_id is None or job.worker_id == worker_id
        ]
        items.sort(key=lambda job: job.started_at, reverse=True)
        return items[:limit]

    def pending_waiters(self, job_id: str) -> int:
        return len(self._waiters.get(job_id, ()))

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def set_result(
        self,
        job_id: str,
        response_text: str,
        report: Optional[ReportInput] = None,
    ) -> None:
        self._finish(job_id, "succeeded", response_text=response_text, report=report)

    def set_error(
        self,
        job_id: str,
        error: str,
        report: Optional[ReportInput] = None,
    ) -> None:
        self._finish(job_id, "failed", error=error, report=report)

    def cancel(self, job_id: str, reason: str = "canceled") -> None:
        self._finish(job_id, "canceled", error=reason)

    def _finish(
        self,
        job_id: str,
        status: WorkerJobStatus,
        *,
        response_text: Optional[str] = None,
        error: Optional[str] = None,
        report: Optional[ReportInput] = None,
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != "running":
            return
        job.status = status
        job.response_text = response_text
        job.error = error
        job.report = _as_report(report)
        job.finished_at = self._clock()
        job.duration_seconds = round(job.finished_at - job.started_at, 3)
        logger.info(
            "jobs.finished",
            job_id=job_id,
            worker_id=job.worker_id,
            status=status,
            duration=job.duration_seconds,
        )
        self._notify(job_id, job)
        self._emit(job, status)
        self.prune()

    def attach_report(self, job_id: str, report: ReportInput) -> None:
        """Shallow-merge report fields into a job, whatever its status."""
        job = self._jobs.get(job_id)
        if job is None:
            return
        update = _as_report(report).model_dump(exclude_unset=True)
        if job.report is None:
            job.report = WorkerJobReport(**update)
        else:
            job.report = job.report.model_copy(update=update)
        self.prune()

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def wait(self, job_id: str, timeout: float = DEFAULT_WAIT_TIMEOUT) -> WorkerJob:
        """Block until the job is terminal.

        Raises UnknownJobError at once for unknown ids and JobTimeoutError if
        ``timeout`` seconds pass first; the job itself is left untouched.
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        if job.is_terminal:
            return job

        waiter: asyncio.Future[WorkerJob] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, set()).add(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            raise JobTimeoutError(
                f'Timed out waiting for job "{job_id}" after {timeout}s'
            ) from None
        finally:
            self._remove_waiter(job_id, waiter)

    def _remove_waiter(self, job_id: str, waiter: asyncio.Future[WorkerJob]) -> None:
        waiters = self._waiters.get(job_id)
        if waiters is None:
            return
        waiters.discard(waiter)
        if not waiters:
            del self._waiters[job_id]

    def _notify(self, job_id: str, job: WorkerJob) -> None:
        waiters = self._waiters.pop(job_id, None)
        for waiter in waiters or ():
            if not waiter.done():
                waiter.set_result(job)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _evictable(self, job_id: str, job: WorkerJob) -> bool:
        return job.is_terminal and job_id not in self._waiters

    def prune(self) -> None:
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if self._evictable(job_id, job)
            and now - (job.finished_at or job.started_at) > self._max_age
        ]
        for job_id in expired:
            del self._jobs[job_id]

        overflow = len(self._jobs) - self._max_jobs
        if overflow > 0:
            oldest = [
                job_id for job_id, job in self._jobs.items() if self._evictable(job_id, job)
            ][:overflow]
            for job_id in oldest:
                del self._jobs[job_id]

        if expired or overflow > 0:
            logger.debug("jobs.pruned", expired=len(expired), remaining=len(self._jobs))

    def _emit(self, job: WorkerJob, status: str) -> None:
        emit_safely(
            self._event_bus,
            WorkerJobEvent(
                job_id=job.id,
                worker_id=job.worker_id,
                status=status,
                job=job.model_dump(),
            ),
        )
