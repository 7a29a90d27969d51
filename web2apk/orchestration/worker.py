"""
Build worker.

The processor the job queue runs for every attempt: drives the materializer, the
toolchain and the artifact store through the ordered build stages, streaming
progress into the build record and finalizing it.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import Config
from ..core.exceptions import CancelledByUserError, classify_error, error_code
from ..core.logging import bind_context, clear_context, get_logger
from ..core.types import StageResult, StageStatus
from ..models.build import BuildOutput, BuildStatus
from ..services.materializer import ProjectMaterializer
from ..services.toolchain import ToolchainInvoker
from ..storage.interface import ArtifactStore, BuildRepository, StoredArtifact
from .queue import JobLease
from .stages import ENTRY_PROGRESS, ENTRY_STEP, RETRY_STEP, BuildStage

logger = get_logger(__name__)

_BUILDING = (BuildStatus.BUILDING,)
_STARTABLE = (BuildStatus.QUEUED, BuildStatus.BUILDING)


class BuildResult(BaseModel):
    """Result of a successful build attempt."""

    build_id: str
    attempt: int
    output: BuildOutput
    stages: list[StageResult] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return sum(stage.duration_seconds for stage in self.stages)


class BuildWorker:
    """Runs one build attempt per job lease."""

    def __init__(
        self,
        config: Config,
        repository: BuildRepository,
        artifacts: ArtifactStore,
        materializer: ProjectMaterializer,
        toolchain: ToolchainInvoker,
    ) -> None:
        self.config = config
        self.repository = repository
        self.artifacts = artifacts
        self.materializer = materializer
        self.toolchain = toolchain

    def workspace_for(self, build_id: str) -> Path:
        return self.config.temp_dir / build_id

    async def run(self, lease: JobLease) -> BuildResult:
        """Execute one attempt of the leased job.

        Raises:
            CancelledByUserError: If the record left ``building`` between stages
            Web2APKError: Any classified stage failure, after the record was updated
        """
        job = lease.job
        workspace = self.workspace_for(job.build_id)
        bind_context(build_id=job.build_id, attempt=lease.attempt)
        logger.info("Build attempt started", premium=job.is_premium)
        stored: StoredArtifact | None = None

        try:
            record = await self.repository.update_build(
                job.build_id,
                _STARTABLE,
                lambda r: r.mark_building(ENTRY_PROGRESS, ENTRY_STEP, lease.attempt),
            )
            if record is None:
                raise CancelledByUserError(message="Build cancelled by user", build_id=job.build_id)

            stages: list[StageResult] = []
            artifact = await self._run_stages(lease, workspace, stages)

            async with self._stage(lease, BuildStage.PUBLISH_ARTIFACT, stages) as stage:
                stored = await self._publish(artifact, job.build_id)
                stage.metadata["location"] = stored.location

            async with self._stage(lease, BuildStage.FINALIZE, stages):
                await self._remove_workspace(workspace)

            output = BuildOutput(
                location=stored.location,
                size_bytes=stored.size_bytes,
                download_url=stored.url,
                sha256=stored.sha256,
            )
            retention_days = self.config.retention.days_for(job.is_premium)
            completed = await self.repository.update_build(
                job.build_id, _BUILDING, lambda r: r.mark_completed(output, retention_days)
            )
            if completed is None:
                raise CancelledByUserError(message="Build cancelled by user", build_id=job.build_id)

            logger.info("Build completed", url=stored.url, size=stored.size_bytes)
            return BuildResult(build_id=job.build_id, attempt=lease.attempt, output=output, stages=stages)

        except asyncio.CancelledError:
            # Queue interruptions (stall, timeout) arrive as cancellation
            if lease.interruption is None:
                raise
            await self._discard(stored)
            await self._record_failure(lease, lease.interruption)
            raise lease.interruption
        except Exception as e:
            await self._discard(stored)
            await self._record_failure(lease, e)
            raise
        finally:
            await self._remove_workspace(workspace)
            clear_context()

    async def _run_stages(
        self,
        lease: JobLease,
        workspace: Path,
        stages: list[StageResult],
    ) -> Path:
        """Materialize, compile and sign; returns the artifact to publish."""
        job = lease.job
        config, features = job.config, job.features

        async with self._stage(lease, BuildStage.PREPARE_WORKSPACE, stages):
            await self.materializer.prepare_workspace(workspace)

        async with self._stage(lease, BuildStage.MATERIALIZE_TEMPLATE, stages):
            await self.materializer.copy_template(workspace)

        async with self._stage(lease, BuildStage.CONFIGURE_MANIFEST, stages):
            await self.materializer.configure_manifest(workspace, config, features)

        async with self._stage(lease, BuildStage.CONFIGURE_BUILD_DESCRIPTOR, stages):
            await self.materializer.configure_build_descriptor(workspace, config)

        async with self._stage(lease, BuildStage.CONFIGURE_DISPLAY_NAME, stages):
            await self.materializer.configure_display_name(workspace, config)

        async with self._stage(lease, BuildStage.PROCESS_ICON, stages) as stage:
            icons = await self.materializer.process_icon(workspace, config)
            if icons:
                stage.mark_completed(icons)
            else:
                stage.mark_skipped()

        async with self._stage(lease, BuildStage.PROCESS_SPLASH, stages) as stage:
            splash = await self.materializer.process_splash(workspace, config)
            stage.mark_completed(splash)

        async with self._stage(lease, BuildStage.CONFIGURE_RUNTIME, stages):
            await self.materializer.configure_runtime(workspace, config, features, job.is_premium)

        async with self._stage(lease, BuildStage.INVOKE_TOOLCHAIN, stages) as stage:
            unsigned = await self.toolchain.compile(workspace)
            stage.mark_completed([unsigned])

        async with self._stage(lease, BuildStage.SIGN_ARTIFACT, stages) as stage:
            destination = workspace / "signed" / f"{job.build_id}.apk"
            artifact = await self.toolchain.sign(unsigned, destination)
            if artifact == unsigned:
                stage.mark_skipped()
            else:
                stage.mark_completed([artifact])

        return artifact

    @asynccontextmanager
    async def _stage(
        self,
        lease: JobLease,
        stage: BuildStage,
        stages: list[StageResult],
    ) -> AsyncIterator[StageResult]:
        """Report a stage boundary, then time the stage body."""
        await self._report(lease, stage)
        result = StageResult(stage_name=stage.value)
        stages.append(result)
        logger.debug("Stage started", stage=stage.value)
        try:
            yield result
        except BaseException as e:
            result.mark_failed(str(e) or type(e).__name__)
            logger.warning("Stage failed", stage=stage.value, error=str(e))
            raise
        if result.status == StageStatus.RUNNING:
            result.mark_completed()
        logger.debug("Stage finished", stage=stage.value, seconds=round(result.duration_seconds, 3))

    async def _report(self, lease: JobLease, stage: BuildStage) -> None:
        """Write stage progress; a record no longer ``building`` means it was cancelled."""
        build_id = lease.job.build_id
        record = await self.repository.update_build(
            build_id, _BUILDING, lambda r: r.apply_progress(stage.progress, stage.step)
        )
        lease.heartbeat()
        if record is None:
            logger.info("Build cancelled, stopping before stage", stage=stage.value)
            raise CancelledByUserError(message="Build cancelled by user", build_id=build_id)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    async def _publish(self, artifact: Path, build_id: str) -> StoredArtifact:
        return await self.artifacts.upload_artifact(artifact, build_id)

    async def _discard(self, stored: StoredArtifact | None) -> None:
        """Delete an artifact published by an attempt that did not complete."""
        if stored is None:
            return
        await self.artifacts.delete_artifact(stored.location)
        logger.info("Published artifact discarded", location=stored.location)

    async def _record_failure(self, lease: JobLease, exc: BaseException) -> None:
        """Requeue the record when the queue will retry, otherwise fail it once."""
        error = classify_error(exc)
        build_id = lease.job.build_id

        if isinstance(error, CancelledByUserError):
            logger.info("Build attempt stopped after cancellation")
            return

        if lease.will_retry(error):
            await self.repository.update_build(
                build_id, _BUILDING, lambda r: r.mark_requeued(RETRY_STEP)
            )
            logger.warning("Build attempt failed, will retry", error=str(error), code=error_code(error))
            return

        code = error_code(error)
        await self.repository.update_build(
            build_id, _STARTABLE, lambda r: r.mark_failed(error.message, code)
        )
        logger.error("Build failed", error=str(error), code=code)

    async def _remove_workspace(self, workspace: Path) -> None:
        if workspace.exists():
            await asyncio.to_thread(shutil.rmtree, workspace, ignore_errors=True)
