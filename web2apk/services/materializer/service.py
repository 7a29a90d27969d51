"""
Project Materializer.

Turns the read-only template into a ready-to-compile project inside a per-build
scratch workspace. Every step is exposed separately so the build worker can report
progress between them; ``materialize`` runs them all in order.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Callable
from pathlib import Path

import aiofiles

from ...core.exceptions import ResourceError
from ...core.logging import get_logger
from ...models.build import BuildConfig, FeatureFlags
from .assets import render_icon_variants, render_splash
from .patches import (
    patch_activity,
    patch_build_descriptor,
    patch_display_name,
    patch_manifest,
    patch_splash_color,
)
from .template import (
    ACTIVITY_PATH,
    BUILD_DESCRIPTOR_PATH,
    COLORS_PATH,
    MANIFEST_PATH,
    RES_DIR,
    SPLASH_IMAGE_PATH,
    STRINGS_PATH,
    TemplateStore,
)

logger = get_logger(__name__)


class ProjectMaterializer:
    """Copies and configures the Android template for one build."""

    def __init__(self, template: TemplateStore, watermark_text: str = "Created with Web2APK") -> None:
        """Initialize the materializer.

        Args:
            template: Read-only template source
            watermark_text: Overlay text injected into free-plan builds
        """
        self.template = template
        self.watermark_text = watermark_text

    async def _rewrite(self, workspace: Path, relative: Path, transform: Callable[[str], str]) -> None:
        """Apply a text transform to one workspace file."""
        path = workspace / relative
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                original = await f.read()
        except OSError as e:
            raise ResourceError(message=f"Cannot read project file: {e}", path=str(path), cause=e)

        patched = transform(original)

        try:
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(patched)
        except OSError as e:
            raise ResourceError(message=f"Cannot write project file: {e}", path=str(path), cause=e)

    async def prepare_workspace(self, workspace: Path) -> None:
        """Create an empty scratch directory, discarding leftovers of a previous attempt."""
        try:
            if workspace.exists():
                await asyncio.to_thread(shutil.rmtree, workspace)
            workspace.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(message=f"Cannot prepare workspace: {e}", path=str(workspace), cause=e)

    async def copy_template(self, workspace: Path) -> None:
        """Copy the template tree, preserving file modes (the driver must stay executable)."""
        self.template.validate()
        try:
            await asyncio.to_thread(
                shutil.copytree, self.template.root, workspace, copy_function=shutil.copy2
            )
        except (OSError, shutil.Error) as e:
            raise ResourceError(message=f"Cannot copy template: {e}", path=str(workspace), cause=e)
        logger.debug("Template copied", source=str(self.template.root), workspace=str(workspace))

    async def configure_manifest(self, workspace: Path, config: BuildConfig, features: FeatureFlags) -> None:
        await self._rewrite(
            workspace, MANIFEST_PATH, lambda text: patch_manifest(text, config.package_name, features)
        )

    async def configure_build_descriptor(self, workspace: Path, config: BuildConfig) -> None:
        await self._rewrite(
            workspace, BUILD_DESCRIPTOR_PATH, lambda text: patch_build_descriptor(text, config)
        )

    async def configure_display_name(self, workspace: Path, config: BuildConfig) -> None:
        await self._rewrite(
            workspace, STRINGS_PATH, lambda text: patch_display_name(text, config.app_name)
        )

    async def process_icon(self, workspace: Path, config: BuildConfig) -> list[Path]:
        """Render launcher icons. Returns no paths when the template default is kept."""
        if config.icon_path is None:
            return []
        return await asyncio.to_thread(render_icon_variants, config.icon_path, workspace / RES_DIR)

    async def process_splash(self, workspace: Path, config: BuildConfig) -> list[Path]:
        """Apply the splash color and, when supplied, the splash image."""
        await self._rewrite(
            workspace, COLORS_PATH, lambda text: patch_splash_color(text, config.splash_background)
        )
        if config.splash_image_path is None:
            return []
        target = await asyncio.to_thread(
            render_splash, config.splash_image_path, workspace / SPLASH_IMAGE_PATH
        )
        return [target]

    async def configure_runtime(
        self,
        workspace: Path,
        config: BuildConfig,
        features: FeatureFlags,
        is_premium: bool,
    ) -> None:
        """Write URL, feature constants and (free plan only) the watermark into the activity."""
        watermark = None if is_premium else self.watermark_text
        await self._rewrite(
            workspace,
            ACTIVITY_PATH,
            lambda text: patch_activity(text, config, features, watermark=watermark),
        )

    async def materialize(
        self,
        workspace: Path,
        config: BuildConfig,
        features: FeatureFlags,
        is_premium: bool = False,
    ) -> Path:
        """Produce a complete, configured project in ``workspace``.

        Returns:
            The workspace path.
        """
        await self.prepare_workspace(workspace)
        await self.copy_template(workspace)
        await self.configure_manifest(workspace, config, features)
        await self.configure_build_descriptor(workspace, config)
        await self.configure_display_name(workspace, config)
        await self.process_icon(workspace, config)
        await self.process_splash(workspace, config)
        await self.configure_runtime(workspace, config, features, is_premium)
        logger.info("Project materialized", workspace=str(workspace), package=config.package_name)
        return workspace
