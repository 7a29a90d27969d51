"""
Build request and build record models.

``BuildConfig`` and ``FeatureFlags`` are the immutable per-request inputs that drive
template materialization. ``BuildRecord`` is the mutable, persisted state of one build;
its ``mark_*`` methods are the only way the orchestrator changes it.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.types import utcnow

PACKAGE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")
HEX_COLOR_PATTERN = re.compile(r"^#?([0-9A-Fa-f]{6})$")
URL_FORBIDDEN_PATTERN = re.compile(r"[\s\x00-\x1f\x7f]")
DEFAULT_PACKAGE_PREFIX = "com.web2apk"


class BuildStatus(str, Enum):
    """Lifecycle status of a build record."""

    PENDING = "pending"
    QUEUED = "queued"
    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({BuildStatus.PENDING, BuildStatus.QUEUED, BuildStatus.BUILDING})
TERMINAL_STATUSES = frozenset({BuildStatus.COMPLETED, BuildStatus.FAILED, BuildStatus.CANCELLED})


def derive_package_name(app_name: str) -> str:
    """Derive a package identifier from an app name (``My App!`` -> ``com.web2apk.myapp``)."""
    slug = re.sub(r"[^a-z0-9]", "", app_name.lower())
    return f"{DEFAULT_PACKAGE_PREFIX}.{slug}"


class FeatureFlags(BaseModel):
    """WebView features compiled into the generated activity."""

    model_config = {"frozen": True}

    pull_to_refresh: bool = Field(default=True, description="Swipe down to reload")
    progress_bar: bool = Field(default=True, description="Page load progress indicator")
    error_page: bool = Field(default=True, description="Offline/error page on load failure")
    file_upload: bool = Field(default=False, description="<input type=file> bridge")
    deep_linking: bool = Field(default=False, description="Open incoming VIEW intents")
    local_storage: bool = Field(default=True, description="DOM storage and database")
    geolocation: bool = Field(default=False, description="Geolocation API access")


class BuildConfig(BaseModel):
    """Immutable configuration of one build request."""

    model_config = {"frozen": True}

    website_url: str = Field(description="Website loaded by the app")
    app_name: str = Field(min_length=1, max_length=50, description="Launcher display name")
    package_name: str = Field(description="Reverse-domain application identifier")
    version_code: int = Field(default=1, ge=1, description="Android versionCode")
    version_name: str = Field(default="1.0.0", min_length=1, description="Android versionName")
    splash_background: str = Field(default="#FFFFFF", description="Splash background color")
    icon_path: Path | None = Field(default=None, description="Source image for launcher icons")
    splash_image_path: Path | None = Field(default=None, description="Source image for splash logo")

    @model_validator(mode="before")
    @classmethod
    def _default_package_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("package_name") and data.get("app_name"):
            data = {**data, "package_name": derive_package_name(str(data["app_name"]))}
        return data

    @field_validator("website_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if URL_FORBIDDEN_PATTERN.search(value):
            raise ValueError("must not contain whitespace or control characters")
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return value

    @field_validator("app_name")
    @classmethod
    def _check_app_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("package_name")
    @classmethod
    def _check_package_name(cls, value: str) -> str:
        value = value.strip()
        if not PACKAGE_NAME_PATTERN.match(value):
            raise ValueError("must look like com.example.app")
        return value

    @field_validator("splash_background")
    @classmethod
    def _check_color(cls, value: str) -> str:
        match = HEX_COLOR_PATTERN.match(value.strip())
        if not match:
            raise ValueError("must be a 6-digit hex color such as #1A2B3C")
        return f"#{match.group(1).upper()}"


class BuildOutput(BaseModel):
    """Published artifact of a completed build."""

    location: str | None = Field(default=None, description="Artifact store location")
    size_bytes: int | None = Field(default=None)
    download_url: str | None = Field(default=None)
    sha256: str | None = Field(default=None)


class BuildTiming(BaseModel):
    """Wall-clock timing of a build."""

    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    duration_ms: int | None = Field(default=None)


class BuildErrorInfo(BaseModel):
    """Classified failure written once when a build fails."""

    message: str | None = Field(default=None)
    code: str | None = Field(default=None)


class DownloadStats(BaseModel):
    """Artifact download accounting."""

    download_count: int = Field(default=0, ge=0)
    last_download_at: datetime | None = Field(default=None)


class BuildRecord(BaseModel):
    """Persistent state of one build request."""

    build_id: str = Field(description="Opaque unique build identifier")
    user_id: str = Field(description="Owning user reference")
    config: BuildConfig
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    status: BuildStatus = Field(default=BuildStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = Field(default="Initializing...")
    output: BuildOutput = Field(default_factory=BuildOutput)
    timing: BuildTiming = Field(default_factory=BuildTiming)
    error: BuildErrorInfo = Field(default_factory=BuildErrorInfo)
    expires_at: datetime | None = Field(default=None)
    is_deleted: bool = Field(default=False)
    stats: DownloadStats = Field(default_factory=DownloadStats)
    is_premium: bool = Field(default=False)
    has_watermark: bool = Field(default=True)
    job_id: str | None = Field(default=None)
    attempts: int = Field(default=0, ge=0, description="Build attempts started")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_formatted(self) -> str | None:
        """Human-readable build duration, e.g. ``2m 5s`` or ``42s``."""
        if self.timing.duration_ms is None:
            return None
        seconds = self.timing.duration_ms // 1000
        minutes, remaining = divmod(seconds, 60)
        return f"{minutes}m {remaining}s" if minutes > 0 else f"{seconds}s"

    @property
    def size_formatted(self) -> str | None:
        """Human-readable artifact size, e.g. ``3.10 MB``."""
        if not self.output.size_bytes:
            return None
        return f"{self.output.size_bytes / (1024 * 1024):.2f} MB"

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def _finish_timing(self, now: datetime) -> None:
        self.timing.completed_at = now
        if self.timing.started_at is not None:
            elapsed = now - self.timing.started_at
            self.timing.duration_ms = int(elapsed.total_seconds() * 1000)

    def mark_queued(self, job_id: str, now: datetime | None = None) -> None:
        """Record admission to the job queue."""
        now = now or utcnow()
        self.status = BuildStatus.QUEUED
        self.job_id = job_id
        self.current_step = "Waiting in build queue..."
        self.timing.started_at = now
        self.updated_at = now

    def mark_building(self, progress: int, step: str, attempt: int) -> None:
        """Enter the building state for an attempt."""
        self.status = BuildStatus.BUILDING
        self.attempts = max(self.attempts, attempt)
        self.apply_progress(progress, step)

    def apply_progress(self, progress: int, step: str) -> None:
        """Report stage progress. Progress never moves backwards."""
        self.progress = max(self.progress, min(progress, 100))
        self.current_step = step
        self.updated_at = utcnow()

    def mark_requeued(self, step: str) -> None:
        """Return to the queue between attempts."""
        self.status = BuildStatus.QUEUED
        self.current_step = step
        self.updated_at = utcnow()

    def mark_completed(
        self,
        output: BuildOutput,
        retention_days: int,
        now: datetime | None = None,
    ) -> None:
        """Record a successful build and compute when its artifact expires."""
        now = now or utcnow()
        self.status = BuildStatus.COMPLETED
        self.progress = 100
        self.current_step = "Build completed successfully"
        self.output = output
        self._finish_timing(now)
        self.expires_at = now + timedelta(days=retention_days)
        self.updated_at = now

    def mark_failed(self, message: str, code: str, now: datetime | None = None) -> None:
        """Record a terminal failure."""
        now = now or utcnow()
        self.status = BuildStatus.FAILED
        self.current_step = "Build failed"
        self.error = BuildErrorInfo(message=message or "Build failed", code=code)
        self._finish_timing(now)
        self.updated_at = now

    def mark_cancelled(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self.status = BuildStatus.CANCELLED
        self.current_step = "Build cancelled by user"
        self._finish_timing(now)
        self.updated_at = now

    def mark_deleted(self, now: datetime | None = None) -> None:
        self.is_deleted = True
        self.updated_at = now or utcnow()

    def mark_artifact_removed(self, now: datetime | None = None) -> None:
        """Forget the artifact after the expiry sweep deleted it."""
        self.output = BuildOutput()
        self.is_deleted = True
        self.updated_at = now or utcnow()

    def record_download(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self.stats.download_count += 1
        self.stats.last_download_at = now
        self.updated_at = now


class BuildStatusView(BaseModel):
    """Read model returned to the API layer."""

    build_id: str
    status: BuildStatus
    progress: int
    current_step: str
    app_name: str
    package_name: str
    output: BuildOutput | None = None
    error: BuildErrorInfo | None = None
    size_formatted: str | None = None
    duration_formatted: str | None = None
    download_count: int = 0
    created_at: datetime
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    is_expired: bool = False

    @classmethod
    def from_record(cls, record: BuildRecord, now: datetime | None = None) -> BuildStatusView:
        return cls(
            build_id=record.build_id,
            status=record.status,
            progress=record.progress,
            current_step=record.current_step,
            app_name=record.config.app_name,
            package_name=record.config.package_name,
            output=record.output if record.status == BuildStatus.COMPLETED else None,
            error=record.error if record.status == BuildStatus.FAILED else None,
            size_formatted=record.size_formatted,
            duration_formatted=record.duration_formatted,
            download_count=record.stats.download_count,
            created_at=record.created_at,
            completed_at=record.timing.completed_at,
            expires_at=record.expires_at,
            is_expired=record.is_expired(now),
        )
