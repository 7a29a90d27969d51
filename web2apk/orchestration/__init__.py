"""Build orchestration: job queue, worker and service facade."""

from .queue import JobHandle, JobLease, JobQueue
from .service import BuildService
from .stages import BuildStage
from .worker import BuildResult, BuildWorker

__all__ = [
    "BuildResult",
    "BuildService",
    "BuildStage",
    "BuildWorker",
    "JobHandle",
    "JobLease",
    "JobQueue",
]
