"""Build stages and the progress each one reports."""

from __future__ import annotations

from enum import Enum


class BuildStage(str, Enum):
    """Ordered stages of one build attempt."""

    PREPARE_WORKSPACE = "prepare_workspace"
    MATERIALIZE_TEMPLATE = "materialize_template"
    CONFIGURE_MANIFEST = "configure_manifest"
    CONFIGURE_BUILD_DESCRIPTOR = "configure_build_descriptor"
    CONFIGURE_DISPLAY_NAME = "configure_display_name"
    PROCESS_ICON = "process_icon"
    PROCESS_SPLASH = "process_splash"
    CONFIGURE_RUNTIME = "configure_runtime"
    INVOKE_TOOLCHAIN = "invoke_toolchain"
    SIGN_ARTIFACT = "sign_artifact"
    PUBLISH_ARTIFACT = "publish_artifact"
    FINALIZE = "finalize"

    @property
    def progress(self) -> int:
        return STAGE_REPORTS[self][0]

    @property
    def step(self) -> str:
        return STAGE_REPORTS[self][1]


STAGE_REPORTS: dict[BuildStage, tuple[int, str]] = {
    BuildStage.PREPARE_WORKSPACE: (15, "Creating project structure..."),
    BuildStage.MATERIALIZE_TEMPLATE: (20, "Copying Android template..."),
    BuildStage.CONFIGURE_MANIFEST: (30, "Configuring app manifest..."),
    BuildStage.CONFIGURE_BUILD_DESCRIPTOR: (40, "Configuring build scripts..."),
    BuildStage.CONFIGURE_DISPLAY_NAME: (45, "Setting app name..."),
    BuildStage.PROCESS_ICON: (50, "Processing app icon..."),
    BuildStage.PROCESS_SPLASH: (55, "Creating splash screen..."),
    BuildStage.CONFIGURE_RUNTIME: (60, "Configuring WebView..."),
    BuildStage.INVOKE_TOOLCHAIN: (70, "Building APK (this may take a few minutes)..."),
    BuildStage.SIGN_ARTIFACT: (90, "Signing APK..."),
    BuildStage.PUBLISH_ARTIFACT: (95, "Publishing APK..."),
    BuildStage.FINALIZE: (98, "Finalizing..."),
}

ENTRY_PROGRESS = 10
ENTRY_STEP = "Preparing build environment..."
RETRY_STEP = "Retrying build..."
