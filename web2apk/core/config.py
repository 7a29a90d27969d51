"""
Configuration management for web2apk.

Provides centralized, type-safe configuration with environment variable overrides
and sensible defaults for the queue, toolchain, signing and storage components.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, model_validator

# Load .env file if it exists (looks in cwd and parent directories)
load_dotenv()


class QueueConfig(BaseModel):
    """Build queue discipline."""

    max_concurrent_builds: int = Field(default=3, ge=1, description="Simultaneous builds per process")
    max_attempts: int = Field(default=2, ge=1, description="Attempts per job before it fails")
    backoff_delay_ms: int = Field(default=2000, ge=0, description="Base retry delay, doubled per attempt")
    build_timeout_ms: int = Field(default=900_000, ge=1, description="Hard limit for one attempt")
    lock_duration_ms: int = Field(default=900_000, ge=1, description="Lease length of an active job")
    stalled_interval_ms: int = Field(default=60_000, ge=1, description="Lease check period")
    max_stalled_count: int = Field(default=1, ge=0, description="Stalls tolerated before failing")
    keep_completed: int = Field(default=100, ge=0, description="Completed jobs kept in history")
    keep_failed: int = Field(default=200, ge=0, description="Failed jobs kept in history")
    premium_priority: int = Field(default=1, description="Priority value of premium builds")
    free_priority: int = Field(default=10, description="Priority value of free builds")

    @model_validator(mode="after")
    def _lease_covers_timeout(self) -> QueueConfig:
        if self.lock_duration_ms < self.build_timeout_ms:
            raise ValueError(
                f"lock_duration_ms ({self.lock_duration_ms}) must be >= "
                f"build_timeout_ms ({self.build_timeout_ms})"
            )
        return self


class ToolchainConfig(BaseModel):
    """External build tools configuration."""

    android_sdk_root: Path = Field(
        default_factory=lambda: Path(os.environ.get("ANDROID_SDK_ROOT", "/opt/android-sdk")),
        description="Android SDK root path",
    )
    java_home: Path = Field(
        default_factory=lambda: Path(
            os.environ.get("JAVA_HOME", "/usr/lib/jvm/java-17-openjdk-amd64")
        ),
        description="JDK used by Gradle",
    )
    build_tools_version: str = Field(default="34.0.0", description="SDK build-tools version")
    driver_name: str = Field(default="gradlew", description="Build driver script in the project root")
    build_tasks: list[str] = Field(
        default_factory=lambda: ["clean", "assembleRelease"],
        description="Gradle tasks run for a release build",
    )
    compile_timeout_ms: int = Field(default=600_000, ge=1, description="Gradle hard timeout")
    sign_timeout_ms: int = Field(default=120_000, ge=1, description="apksigner hard timeout")
    apksigner_path: Path | None = Field(default=None, description="Custom apksigner path")


class SigningConfig(BaseModel):
    """Release keystore credentials."""

    keystore_path: Path | None = Field(default=None)
    keystore_password: SecretStr | None = Field(default=None)
    key_alias: str | None = Field(default=None)
    key_password: SecretStr | None = Field(default=None)

    @property
    def configured(self) -> bool:
        """Whether every credential needed by apksigner is present."""
        return bool(
            self.keystore_path
            and self.keystore_password
            and self.keystore_password.get_secret_value()
            and self.key_alias
            and self.key_password
            and self.key_password.get_secret_value()
        )


class StorageConfig(BaseModel):
    """Storage configuration for artifacts and build records."""

    backend: Literal["local"] = Field(default="local", description="Artifact storage backend")
    base_path: Path = Field(default=Path("./builds"), description="Artifact directory")
    records_path: Path = Field(default=Path("./data/builds"), description="Build record directory")
    download_base_url: str = Field(default="/downloads", description="Public download URL prefix")


class RetentionConfig(BaseModel):
    """Artifact retention by plan."""

    premium_days: int = Field(default=365, ge=1)
    free_days: int = Field(default=1, ge=1)

    def days_for(self, is_premium: bool) -> int:
        return self.premium_days if is_premium else self.free_days


class Config(BaseModel):
    """Root configuration for web2apk."""

    project_name: str = Field(default="web2apk", description="Project identifier")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["auto", "console", "json"] = Field(
        default="auto", description="Log renderer; auto picks console on a TTY"
    )
    temp_dir: Path = Field(default=Path("./temp"), description="Scratch workspaces root")
    template_dir: Path | None = Field(
        default=None, description="Android template root; packaged template when unset"
    )
    watermark_text: str = Field(default="Created with Web2APK", description="Free-plan watermark")
    queue: QueueConfig = Field(default_factory=QueueConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)

    model_config = {"extra": "ignore"}

    @classmethod
    def from_env(cls) -> Config:
        """Create configuration from environment variables."""
        build_timeout = int(os.environ.get("BUILD_TIMEOUT_MS", "900000"))
        template_dir = os.environ.get("TEMPLATE_DIR")
        keystore_path = os.environ.get("KEYSTORE_PATH")
        keystore_password = os.environ.get("KEYSTORE_PASSWORD")
        key_password = os.environ.get("KEY_PASSWORD")
        apksigner = os.environ.get("APKSIGNER_PATH")
        return cls(
            log_level=os.environ.get("WEB2APK_LOG_LEVEL", "INFO"),  # type: ignore
            log_format=os.environ.get("WEB2APK_LOG_FORMAT", "auto"),  # type: ignore
            temp_dir=Path(os.environ.get("TEMP_DIR", "./temp")),
            template_dir=Path(template_dir) if template_dir else None,
            queue=QueueConfig(
                max_concurrent_builds=int(os.environ.get("MAX_CONCURRENT_BUILDS", "3")),
                max_attempts=int(os.environ.get("BUILD_QUEUE_ATTEMPTS", "2")),
                backoff_delay_ms=int(os.environ.get("BUILD_BACKOFF_MS", "2000")),
                build_timeout_ms=build_timeout,
                lock_duration_ms=int(os.environ.get("LOCK_DURATION_MS", str(build_timeout))),
                stalled_interval_ms=int(os.environ.get("STALLED_INTERVAL_MS", "60000")),
                max_stalled_count=int(os.environ.get("MAX_STALLED_COUNT", "1")),
            ),
            toolchain=ToolchainConfig(
                build_tools_version=os.environ.get("ANDROID_BUILD_TOOLS_VERSION", "34.0.0"),
                compile_timeout_ms=int(os.environ.get("GRADLE_TIMEOUT_MS", "600000")),
                apksigner_path=Path(apksigner) if apksigner else None,
            ),
            signing=SigningConfig(
                keystore_path=Path(keystore_path) if keystore_path else None,
                keystore_password=SecretStr(keystore_password) if keystore_password else None,
                key_alias=os.environ.get("KEY_ALIAS") or None,
                key_password=SecretStr(key_password) if key_password else None,
            ),
            storage=StorageConfig(
                base_path=Path(os.environ.get("BUILD_OUTPUT_DIR", "./builds")),
                records_path=Path(os.environ.get("BUILD_RECORDS_DIR", "./data/builds")),
                download_base_url=os.environ.get("DOWNLOAD_BASE_URL", "/downloads"),
            ),
            retention=RetentionConfig(
                premium_days=int(os.environ.get("APK_RETENTION_DAYS_PRO", "365")),
                free_days=int(os.environ.get("APK_RETENTION_DAYS_FREE", "1")),
            ),
        )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.from_env()
