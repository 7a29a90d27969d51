"""Data models for web2apk."""

from .build import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BuildConfig,
    BuildErrorInfo,
    BuildOutput,
    BuildRecord,
    BuildStatus,
    BuildStatusView,
    BuildTiming,
    DownloadStats,
    FeatureFlags,
    derive_package_name,
)
from .job import FINISHED_JOB_STATES, Job, JobOutcome, JobState

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "BuildConfig",
    "BuildErrorInfo",
    "BuildOutput",
    "BuildRecord",
    "BuildStatus",
    "BuildStatusView",
    "BuildTiming",
    "DownloadStats",
    "FeatureFlags",
    "derive_package_name",
    "FINISHED_JOB_STATES",
    "Job",
    "JobOutcome",
    "JobState",
]
