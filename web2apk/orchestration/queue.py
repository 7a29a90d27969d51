"""
In-process build job queue.

Admits jobs in ``(priority, sequence)`` order under a global concurrency ceiling,
retries failed attempts with exponential backoff and recovers stalled jobs through
leases that the processor renews with ``heartbeat()``.

Every job outcome is delivered through its ``JobHandle`` future; queue transitions
are additionally written to the log.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.config import QueueConfig
from ..core.exceptions import (
    DuplicateJobError,
    JobRunningError,
    StalledJobError,
    ToolchainError,
    classify_error,
)
from ..core.logging import get_logger
from ..core.types import utcnow
from ..models.job import FINISHED_JOB_STATES, Job, JobOutcome, JobState

logger = get_logger(__name__)

Processor = Callable[["JobLease"], Awaitable[Any]]


@dataclass(eq=False)
class JobHandle:
    """Queue-owned state of one job."""

    job_id: str
    job: Job
    priority: int
    sequence: int
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    stalled_count: int = 0
    available_at: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    last_error: BaseException | None = None
    future: asyncio.Future[JobOutcome] = field(default=None, repr=False)  # type: ignore[assignment]

    @property
    def done(self) -> bool:
        return self.state in FINISHED_JOB_STATES

    async def wait(self) -> JobOutcome:
        """Wait for the job's final outcome."""
        return await asyncio.shield(self.future)


class JobLease:
    """One attempt of one job, handed to the processor."""

    def __init__(self, queue: JobQueue, handle: JobHandle, attempt: int) -> None:
        self._queue = queue
        self.handle = handle
        self.attempt = attempt
        self.expires_at = 0.0
        self.interruption: BaseException | None = None
        self._task: asyncio.Task[Any] | None = None
        self.heartbeat()

    @property
    def job(self) -> Job:
        return self.handle.job

    def heartbeat(self) -> None:
        """Renew the lease for another ``lock_duration_ms``."""
        loop = asyncio.get_running_loop()
        self.expires_at = loop.time() + self._queue.config.lock_duration_ms / 1000

    def will_retry(self, exc: BaseException) -> bool:
        """Whether the queue will run this job again if the attempt fails with ``exc``."""
        return self._queue.should_retry(self.handle, exc)

    def interrupt(self, exc: BaseException) -> None:
        """Stop the attempt, surfacing ``exc`` as its failure. First interruption wins."""
        if self.interruption is not None:
            return
        self.interruption = exc
        if self._task is not None and not self._task.done():
            self._task.cancel()


class JobQueue:
    """Priority job queue with bounded concurrency, retries and stall recovery."""

    def __init__(self, config: QueueConfig) -> None:
        self.config = config
        self._sequence = itertools.count(1)
        self._jobs: dict[str, JobHandle] = {}
        self._pending: dict[str, JobHandle] = {}
        self._leases: dict[str, JobLease] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._completed: deque[JobHandle] = deque()
        self._failed: deque[JobHandle] = deque()
        self._processor: Processor | None = None
        self._wakeup = asyncio.Event()
        self._admission_task: asyncio.Task[None] | None = None
        self._stall_task: asyncio.Task[None] | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, job: Job, priority: int) -> JobHandle:
        """Add a job. The job id is the build id."""
        if self._closed:
            raise RuntimeError("Queue is closed")
        if job.build_id in self._jobs:
            raise DuplicateJobError(
                message=f"Build {job.build_id} is already queued", build_id=job.build_id
            )

        handle = JobHandle(
            job_id=job.build_id,
            job=job,
            priority=priority,
            sequence=next(self._sequence),
            available_at=asyncio.get_running_loop().time(),
        )
        handle.future = asyncio.get_running_loop().create_future()
        self._jobs[handle.job_id] = handle
        self._pending[handle.job_id] = handle
        logger.info("Job waiting", job_id=handle.job_id, priority=priority)
        self._wakeup.set()
        return handle

    def get(self, job_id: str) -> JobHandle | None:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> bool:
        """Remove a waiting or delayed job.

        Returns:
            True if removed, False if the job is unknown or already finished.

        Raises:
            JobRunningError: If the job is currently being processed
        """
        handle = self._jobs.get(job_id)
        if handle is None or handle.done:
            return False
        if handle.state == JobState.ACTIVE:
            raise JobRunningError(message=f"Job {job_id} is running", job_id=job_id)

        self._pending.pop(job_id, None)
        self._jobs.pop(job_id, None)
        self._finish(handle, JobState.REMOVED)
        logger.info("Job removed", job_id=job_id)
        return True

    def counts(self) -> dict[str, int]:
        """Number of known jobs per state."""
        result = {state.value: 0 for state in JobState}
        for handle in self._jobs.values():
            result[handle.state.value] += 1
        return result

    def history(self) -> list[JobHandle]:
        """Retained finished jobs, oldest first."""
        return sorted(
            [*self._completed, *self._failed],
            key=lambda h: h.finished_at or h.created_at,
        )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def start(self, processor: Processor) -> None:
        """Begin admitting jobs into ``processor``."""
        if self._admission_task is not None:
            raise RuntimeError("Queue already started")
        self._processor = processor
        self._admission_task = asyncio.create_task(self._admission_loop(), name="job-admission")
        self._stall_task = asyncio.create_task(self._stall_loop(), name="job-stall-check")
        logger.info(
            "Job queue started",
            concurrency=self.config.max_concurrent_builds,
            max_attempts=self.config.max_attempts,
        )

    async def close(self) -> None:
        """Stop admission and stall checking and cancel in-flight processors."""
        self._closed = True
        background = [t for t in (self._admission_task, self._stall_task) if t is not None]
        running = list(self._tasks.values())
        for task in [*background, *running]:
            task.cancel()
        await asyncio.gather(*background, *running, return_exceptions=True)

        for handle in list(self._jobs.values()):
            if not handle.done:
                self._finish(handle, JobState.REMOVED)
        self._pending.clear()
        logger.info("Job queue closed")

    def should_retry(self, handle: JobHandle, exc: BaseException) -> bool:
        """Retry decision shared by the queue and the processor."""
        if self._closed:
            return False
        if isinstance(exc, StalledJobError):
            return handle.stalled_count <= self.config.max_stalled_count
        if not classify_error(exc).retryable:
            return False
        return handle.attempts_made < self.config.max_attempts

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay in seconds before the next attempt."""
        return self.config.backoff_delay_ms * 2 ** max(attempts_made - 1, 0) / 1000

    def check_stalled(self) -> int:
        """Interrupt every active job whose lease has expired.

        Returns:
            Number of jobs found stalled.
        """
        now = asyncio.get_running_loop().time()
        stalled = 0
        for lease in list(self._leases.values()):
            if lease.interruption is not None or lease.expires_at > now:
                continue
            handle = lease.handle
            handle.stalled_count += 1
            stalled += 1
            logger.warning("Job stalled", job_id=handle.job_id, stalled_count=handle.stalled_count)
            lease.interrupt(
                StalledJobError(
                    message="Job lease expired without heartbeat",
                    job_id=handle.job_id,
                    stalled_count=handle.stalled_count,
                )
            )
        return stalled

    def _next_ready(self, now: float) -> JobHandle | None:
        ready = [h for h in self._pending.values() if h.available_at <= now]
        if not ready:
            return None
        return min(ready, key=lambda h: (h.priority, h.sequence))

    def _next_delay(self, now: float) -> float | None:
        delayed = [h.available_at for h in self._pending.values() if h.available_at > now]
        if not delayed:
            return None
        return max(min(delayed) - now, 0.0)

    async def _admission_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._closed:
            self._wakeup.clear()
            now = loop.time()
            while len(self._tasks) < self.config.max_concurrent_builds:
                handle = self._next_ready(now)
                if handle is None:
                    break
                self._launch(handle)

            timeout = None
            if len(self._tasks) < self.config.max_concurrent_builds:
                timeout = self._next_delay(now)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    async def _stall_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.config.stalled_interval_ms / 1000)
            self.check_stalled()

    def _launch(self, handle: JobHandle) -> None:
        del self._pending[handle.job_id]
        handle.state = JobState.ACTIVE
        handle.attempts_made += 1
        lease = JobLease(self, handle, handle.attempts_made)
        self._leases[handle.job_id] = lease
        self._tasks[handle.job_id] = asyncio.create_task(
            self._execute(lease), name=f"build-{handle.job_id}"
        )
        logger.info("Job active", job_id=handle.job_id, attempt=handle.attempts_made)

    async def _execute(self, lease: JobLease) -> None:
        if self._processor is None:
            raise RuntimeError("Queue not started")
        handle = lease.handle
        loop = asyncio.get_running_loop()
        timer = loop.call_later(
            self.config.build_timeout_ms / 1000,
            lease.interrupt,
            ToolchainError(
                message=f"Build timed out after {self.config.build_timeout_ms}ms",
                error_code="BUILD_TIMEOUT",
            ),
        )
        lease._task = asyncio.create_task(self._processor(lease))
        try:
            result = await lease._task
        except asyncio.CancelledError:
            if lease.interruption is None or self._closed:
                raise
            self._settle_failure(handle, lease.interruption)
        except Exception as e:
            self._settle_failure(handle, e)
        else:
            self._finish(handle, JobState.COMPLETED, result=result)
            logger.info("Job completed", job_id=handle.job_id, attempts=handle.attempts_made)
        finally:
            timer.cancel()
            self._leases.pop(handle.job_id, None)
            self._tasks.pop(handle.job_id, None)
            self._wakeup.set()

    def _settle_failure(self, handle: JobHandle, exc: BaseException) -> None:
        handle.last_error = exc
        loop = asyncio.get_running_loop()

        if not self.should_retry(handle, exc):
            self._finish(handle, JobState.FAILED, error=exc)
            logger.error(
                "Job failed",
                job_id=handle.job_id,
                attempts=handle.attempts_made,
                error=str(exc),
            )
            return

        if isinstance(exc, StalledJobError):
            # A stall does not consume an attempt
            handle.attempts_made -= 1
            handle.state = JobState.WAITING
            handle.available_at = loop.time()
            logger.warning("Stalled job requeued", job_id=handle.job_id)
        else:
            delay = self.backoff_delay(handle.attempts_made)
            handle.state = JobState.DELAYED
            handle.available_at = loop.time() + delay
            logger.warning(
                "Job attempt failed, retrying",
                job_id=handle.job_id,
                attempt=handle.attempts_made,
                delay_seconds=delay,
                error=str(exc),
            )
        self._pending[handle.job_id] = handle

    def _finish(
        self,
        handle: JobHandle,
        state: JobState,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        handle.state = state
        handle.finished_at = utcnow()
        if not handle.future.done():
            handle.future.set_result(
                JobOutcome(
                    job_id=handle.job_id,
                    state=state,
                    attempts_made=handle.attempts_made,
                    stalled_count=handle.stalled_count,
                    result=result,
                    error=error,
                )
            )

        if state == JobState.COMPLETED:
            self._retain(self._completed, handle, self.config.keep_completed)
        elif state == JobState.FAILED:
            self._retain(self._failed, handle, self.config.keep_failed)

    def _retain(self, bucket: deque[JobHandle], handle: JobHandle, keep: int) -> None:
        bucket.append(handle)
        while len(bucket) > keep:
            purged = bucket.popleft()
            self._jobs.pop(purged.job_id, None)
