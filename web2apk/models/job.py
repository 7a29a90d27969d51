"""
Job queue data models.

A ``Job`` carries everything a worker needs to build without re-reading the build
record. Queue bookkeeping (attempts, leases, stall counts) lives on the queue's own
handles and never leaks into the build record.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .build import BuildConfig, FeatureFlags


class JobState(str, Enum):
    """Queue-internal job state."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVED = "removed"


FINISHED_JOB_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.REMOVED})


class Job(BaseModel):
    """Snapshot of a build request as handed to the queue."""

    model_config = {"frozen": True}

    build_id: str = Field(description="Build record this job builds")
    user_id: str = Field(description="Owning user reference")
    config: BuildConfig
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    is_premium: bool = Field(default=False)


class JobOutcome(BaseModel):
    """Final result of a job, delivered through its handle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    state: JobState
    attempts_made: int = 0
    stalled_count: int = 0
    result: Any = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.COMPLETED
