"""Unit tests for the build job queue."""

import asyncio

import pytest

from web2apk.core.config import QueueConfig
from web2apk.core.exceptions import (
    ConfigurationError,
    DuplicateJobError,
    JobRunningError,
    StalledJobError,
    ToolchainError,
    error_code,
)
from web2apk.models.build import BuildConfig
from web2apk.models.job import Job, JobState
from web2apk.orchestration.queue import JobLease, JobQueue

BUILD_CONFIG = BuildConfig(website_url="https://example.com", app_name="Example", package_name="com.example.app")


def make_job(build_id: str) -> Job:
    return Job(build_id=build_id, user_id="u1", config=BUILD_CONFIG)


def make_queue(**overrides) -> JobQueue:
    settings = {
        "max_concurrent_builds": 3,
        "max_attempts": 2,
        "backoff_delay_ms": 10,
        "build_timeout_ms": 5000,
        "lock_duration_ms": 5000,
        "stalled_interval_ms": 20,
    }
    settings.update(overrides)
    return JobQueue(QueueConfig(**settings))


class TestQueueConfig:
    def test_lease_must_cover_timeout(self):
        with pytest.raises(ValueError):
            QueueConfig(build_timeout_ms=1000, lock_duration_ms=500)

    def test_backoff_is_exponential(self):
        queue = make_queue(backoff_delay_ms=2000)
        assert queue.backoff_delay(1) == 2.0
        assert queue.backoff_delay(2) == 4.0
        assert queue.backoff_delay(3) == 8.0


@pytest.mark.asyncio
class TestJobQueue:
    """Tests for admission, retries and stall recovery."""

    async def test_priority_order(self):
        """Lower priority values run first; ties run in submission order."""
        queue = make_queue(max_concurrent_builds=1)
        order = []

        async def processor(lease):
            order.append(lease.job.build_id)

        handles = [
            await queue.enqueue(make_job("free-1"), 10),
            await queue.enqueue(make_job("free-2"), 10),
            await queue.enqueue(make_job("premium"), 1),
        ]
        queue.start(processor)
        try:
            await asyncio.wait_for(asyncio.gather(*(h.wait() for h in handles)), timeout=5)
        finally:
            await queue.close()

        assert order == ["premium", "free-1", "free-2"]

    async def test_concurrency_ceiling(self):
        queue = make_queue(max_concurrent_builds=3)
        running = 0
        peak = 0

        async def processor(lease):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1

        handles = [await queue.enqueue(make_job(f"b{i}"), 10) for i in range(7)]
        queue.start(processor)
        try:
            outcomes = await asyncio.wait_for(asyncio.gather(*(h.wait() for h in handles)), timeout=5)
        finally:
            await queue.close()

        assert peak == 3
        assert all(o.succeeded for o in outcomes)

    async def test_execute_requires_started_queue(self):
        queue = make_queue()
        handle = await queue.enqueue(make_job("b1"), 10)

        with pytest.raises(RuntimeError, match="Queue not started"):
            await queue._execute(JobLease(queue, handle, 1))
        await queue.close()

    async def test_duplicate_build_id(self):
        queue = make_queue()
        await queue.enqueue(make_job("b1"), 10)
        with pytest.raises(DuplicateJobError):
            await queue.enqueue(make_job("b1"), 10)
        await queue.close()

    async def test_retry_after_failure(self):
        queue = make_queue()
        attempts = []

        async def processor(lease):
            attempts.append(lease.attempt)
            if lease.attempt == 1:
                assert lease.will_retry(ToolchainError(message="flaky"))
                raise ToolchainError(message="flaky")
            return "ok"

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
        finally:
            await queue.close()

        assert outcome.state == JobState.COMPLETED
        assert outcome.result == "ok"
        assert outcome.attempts_made == 2
        assert attempts == [1, 2]

    async def test_exhausted_attempts_fail(self):
        """A job failing every attempt fails after max_attempts and is not retried again."""
        queue = make_queue(max_attempts=2)
        calls = 0

        async def processor(lease):
            nonlocal calls
            calls += 1
            raise ToolchainError(message="exit 1")

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
            await asyncio.sleep(0.05)
        finally:
            await queue.close()

        assert outcome.state == JobState.FAILED
        assert outcome.attempts_made == 2
        assert isinstance(outcome.error, ToolchainError)
        assert calls == 2

    async def test_non_retryable_error_fails_immediately(self):
        queue = make_queue()
        calls = 0

        async def processor(lease):
            nonlocal calls
            calls += 1
            raise ConfigurationError(message="bad color")

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
        finally:
            await queue.close()

        assert outcome.state == JobState.FAILED
        assert calls == 1

    async def test_stalled_job_is_requeued(self):
        """A stall requeues the job without consuming an attempt."""
        queue = make_queue()
        stalled_runs = 0

        async def processor(lease):
            nonlocal stalled_runs
            if lease.handle.stalled_count == 0:
                stalled_runs += 1
                lease.expires_at = 0.0
                await asyncio.sleep(10)
            return "recovered"

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
        finally:
            await queue.close()

        assert outcome.state == JobState.COMPLETED
        assert outcome.result == "recovered"
        assert outcome.stalled_count == 1
        assert outcome.attempts_made == 1
        assert stalled_runs == 1

    async def test_repeated_stalls_fail(self):
        queue = make_queue(max_stalled_count=1)

        async def processor(lease):
            lease.expires_at = 0.0
            await asyncio.sleep(10)

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
        finally:
            await queue.close()

        assert outcome.state == JobState.FAILED
        assert isinstance(outcome.error, StalledJobError)
        assert outcome.stalled_count == 2

    async def test_job_timeout(self):
        queue = make_queue(build_timeout_ms=100, lock_duration_ms=100)

        async def processor(lease):
            for _ in range(500):
                lease.heartbeat()
                await asyncio.sleep(0.01)

        handle = await queue.enqueue(make_job("b1"), 10)
        queue.start(processor)
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=5)
        finally:
            await queue.close()

        assert outcome.state == JobState.FAILED
        assert outcome.attempts_made == 2
        assert error_code(outcome.error) == "BUILD_TIMEOUT"

    async def test_remove(self):
        queue = make_queue(max_concurrent_builds=1)
        release = asyncio.Event()
        started = asyncio.Event()

        async def processor(lease):
            started.set()
            await release.wait()

        running = await queue.enqueue(make_job("running"), 10)
        waiting = await queue.enqueue(make_job("waiting"), 10)
        queue.start(processor)
        try:
            await asyncio.wait_for(started.wait(), timeout=5)

            assert queue.remove("waiting")
            assert (await waiting.wait()).state == JobState.REMOVED
            with pytest.raises(JobRunningError):
                queue.remove("running")

            release.set()
            await asyncio.wait_for(running.wait(), timeout=5)
            assert not queue.remove("running")
            assert not queue.remove("unknown")
        finally:
            await queue.close()

    async def test_history_retention(self):
        queue = make_queue(keep_completed=2)

        async def processor(lease):
            return lease.job.build_id

        queue.start(processor)
        try:
            for i in range(3):
                handle = await queue.enqueue(make_job(f"b{i}"), 10)
                await asyncio.wait_for(handle.wait(), timeout=5)

            assert [h.job_id for h in queue.history()] == ["b1", "b2"]
            assert queue.counts()["completed"] == 2
            # Purged ids are forgotten
            assert queue.get("b0") is None
            await queue.enqueue(make_job("b0"), 10)
        finally:
            await queue.close()
