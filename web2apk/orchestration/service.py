"""
Build service facade.

The operations an API layer calls: submit a build, read its status, cancel or delete
it, list a user's builds, account downloads and sweep expired artifacts.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from ..core.config import Config, get_config
from ..core.exceptions import (
    AccessDeniedError,
    BuildNotFoundError,
    ConfigurationError,
    InvalidStateError,
    JobRunningError,
    error_code,
)
from ..core.logging import get_logger
from ..core.types import utcnow
from ..models.build import (
    ACTIVE_STATUSES,
    BuildConfig,
    BuildRecord,
    BuildStatus,
    BuildStatusView,
    FeatureFlags,
)
from ..models.job import Job
from ..services.materializer import ProjectMaterializer, TemplateStore
from ..services.toolchain import ToolchainInvoker
from ..storage.interface import ArtifactStore, BuildRepository
from ..storage.local import LocalArtifactStore
from ..storage.records import JsonFileBuildRepository
from .queue import JobQueue
from .worker import BuildWorker

logger = get_logger(__name__)


def _configuration_error(error: ValidationError) -> ConfigurationError:
    first = error.errors()[0]
    field_name = ".".join(str(part) for part in first.get("loc", ())) or None
    return ConfigurationError(
        message=first.get("msg", "invalid value"),
        field_name=field_name,
        context={"error_count": error.error_count()},
        cause=error,
    )


class BuildService:
    """Entry point for build requests."""

    def __init__(
        self,
        config: Config | None = None,
        repository: BuildRepository | None = None,
        artifacts: ArtifactStore | None = None,
        materializer: ProjectMaterializer | None = None,
        toolchain: ToolchainInvoker | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        """Wire the service. Collaborators default to the configured local implementations."""
        self.config = config or get_config()
        self.repository = repository or JsonFileBuildRepository(self.config.storage.records_path)
        self.artifacts = artifacts or LocalArtifactStore(
            self.config.storage.base_path, self.config.storage.download_base_url
        )
        self.materializer = materializer or ProjectMaterializer(
            TemplateStore(self.config.template_dir, self.config.toolchain.driver_name),
            self.config.watermark_text,
        )
        self.toolchain = toolchain or ToolchainInvoker(self.config.toolchain, self.config.signing)
        self.queue = queue or JobQueue(self.config.queue)
        self.worker = BuildWorker(
            self.config, self.repository, self.artifacts, self.materializer, self.toolchain
        )
        self._started = False

    async def __aenter__(self) -> BuildService:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def start(self) -> None:
        """Start processing queued builds."""
        if not self._started:
            self.queue.start(self.worker.run)
            self._started = True

    async def stop(self) -> None:
        """Stop processing; running builds are interrupted."""
        if self._started:
            await self.queue.close()
            self._started = False

    async def submit(
        self,
        user_id: str,
        config: BuildConfig | dict[str, Any],
        features: FeatureFlags | dict[str, Any] | None = None,
        premium: bool = False,
    ) -> str:
        """Validate a build request, record it and enqueue it.

        Args:
            user_id: Owning user
            config: Build configuration, validated when given as a mapping
            features: Feature toggles; defaults apply when omitted
            premium: Premium plan (queue priority, retention, no watermark)

        Returns:
            The new build id.

        Raises:
            ConfigurationError: If the request is invalid; no record or job is created
        """
        try:
            build_config = (
                config if isinstance(config, BuildConfig) else BuildConfig.model_validate(config)
            )
            flags = (
                features
                if isinstance(features, FeatureFlags)
                else FeatureFlags.model_validate(features or {})
            )
        except ValidationError as e:
            raise _configuration_error(e)

        for field_name in ("icon_path", "splash_image_path"):
            path = getattr(build_config, field_name)
            if path is not None and not path.is_file():
                raise ConfigurationError(
                    message=f"File not found: {path}", field_name=field_name
                )

        build_id = str(uuid.uuid4())
        record = BuildRecord(
            build_id=build_id,
            user_id=user_id,
            config=build_config,
            features=flags,
            is_premium=premium,
            has_watermark=not premium,
        )
        record.mark_queued(job_id=build_id)
        await self.repository.save_build(record)

        priority = self.config.queue.premium_priority if premium else self.config.queue.free_priority
        job = Job(
            build_id=build_id,
            user_id=user_id,
            config=build_config,
            features=flags,
            is_premium=premium,
        )
        try:
            await self.queue.enqueue(job, priority)
        except Exception as e:
            await self.repository.update_build(
                build_id, None, lambda r: r.mark_failed(f"Failed to queue build: {e}", error_code(e))
            )
            raise

        logger.info(
            "Build submitted",
            build_id=build_id,
            user_id=user_id,
            package=build_config.package_name,
            priority=priority,
        )
        return build_id

    async def _load(self, build_id: str, user_id: str | None) -> BuildRecord:
        record = await self.repository.find_build(build_id)
        if record is None or record.is_deleted:
            raise BuildNotFoundError(message=f"Build {build_id} not found", build_id=build_id)
        if user_id is not None and record.user_id != user_id:
            raise AccessDeniedError(
                message="Build belongs to another user", build_id=build_id, user_id=user_id
            )
        return record

    async def get_status(self, build_id: str, user_id: str | None = None) -> BuildStatusView:
        """Current status, progress and (when completed) output of a build."""
        record = await self._load(build_id, user_id)
        return BuildStatusView.from_record(record)

    async def cancel(self, build_id: str, user_id: str | None = None) -> BuildStatusView:
        """Cancel a pending, queued or building build.

        A queued job is removed from the queue. A running job is only marked; the
        worker stops at its next stage boundary.

        Raises:
            InvalidStateError: If the build already finished
        """
        await self._load(build_id, user_id)
        updated = await self.repository.update_build(
            build_id, ACTIVE_STATUSES, lambda r: r.mark_cancelled()
        )
        if updated is None:
            current = await self._load(build_id, user_id)
            raise InvalidStateError(
                message=f"Cannot cancel build in {current.status.value} status",
                build_id=build_id,
                status=current.status.value,
            )

        try:
            removed = self.queue.remove(updated.job_id or build_id)
        except JobRunningError:
            logger.info("Build is running, cancellation takes effect at the next stage", build_id=build_id)
        else:
            logger.info("Build cancelled", build_id=build_id, removed_from_queue=removed)
        return BuildStatusView.from_record(updated)

    async def delete(self, build_id: str, user_id: str | None = None) -> None:
        """Soft-delete a build, cancelling it first when still active."""
        record = await self._load(build_id, user_id)
        if record.is_active:
            try:
                await self.cancel(build_id, user_id)
            except InvalidStateError:
                pass  # finished in the meantime
        await self.repository.update_build(build_id, None, lambda r: r.mark_deleted())
        logger.info("Build deleted", build_id=build_id)

    async def list_builds(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[BuildStatusView], int]:
        """A page of the user's builds, newest first, and the total count."""
        records, total = await self.repository.list_builds(user_id, page, limit)
        now = utcnow()
        return [BuildStatusView.from_record(r, now) for r in records], total

    async def record_download(self, build_id: str, user_id: str | None = None) -> str:
        """Count a download and return the artifact URL.

        Raises:
            InvalidStateError: If the build is not completed or its artifact expired
        """
        record = await self._load(build_id, user_id)
        if record.status != BuildStatus.COMPLETED or not record.output.download_url:
            raise InvalidStateError(
                message="Build not completed", build_id=build_id, status=record.status.value
            )
        if record.is_expired():
            raise InvalidStateError(
                message="Build has expired", build_id=build_id, status=record.status.value
            )

        updated = await self.repository.update_build(
            build_id, (BuildStatus.COMPLETED,), lambda r: r.record_download()
        )
        if updated is None:
            raise InvalidStateError(
                message="Build no longer downloadable", build_id=build_id, status=record.status.value
            )
        return updated.output.download_url or ""

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete expired artifacts and mark their records.

        Returns:
            Number of records swept.
        """
        now = now or utcnow()
        for record in await self.repository.find_expired(now):
            if record.output.location:
                await self.artifacts.delete_artifact(record.output.location)
        count = await self.repository.delete_expired(now)
        logger.info("Expired builds swept", count=count)
        return count

    async def wait_for(self, build_id: str) -> BuildStatusView:
        """Wait until the build's job finished, then return its status."""
        handle = self.queue.get(build_id)
        if handle is not None:
            await handle.wait()
        return await self.get_status(build_id)
