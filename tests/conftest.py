"""Test configuration for web2apk."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from web2apk.core.config import Config, QueueConfig, StorageConfig
from web2apk.core.exceptions import ToolchainError
from web2apk.services.materializer.template import UNSIGNED_ARTIFACT_PATH
from web2apk.services.toolchain import ToolchainInvoker


class FakeToolchain(ToolchainInvoker):
    """Toolchain double that writes a fake APK instead of running Gradle.

    Tracks how many compiles run at the same time so tests can check the
    queue's concurrency ceiling. ``fail_first`` fails that many compiles before
    succeeding.
    """

    def __init__(
        self,
        config: Config,
        fail: bool = False,
        delay: float = 0.0,
        fail_first: int = 0,
    ) -> None:
        super().__init__(config.toolchain, config.signing)
        self.fail = fail
        self.fail_first = fail_first
        self.delay = delay
        self.compiled: list[Path] = []
        self.running = 0
        self.max_running = 0

    async def compile(self, workspace: Path) -> Path:
        self.compiled.append(workspace)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail or len(self.compiled) <= self.fail_first:
                raise ToolchainError(
                    message="Build failed with exit code 1",
                    tool_name="gradlew",
                    returncode=1,
                )
            artifact = workspace / UNSIGNED_ARTIFACT_PATH
            artifact.parent.mkdir(parents=True, exist_ok=True)
            artifact.write_bytes(b"PK\x03\x04 fake apk for " + workspace.name.encode())
            return artifact
        finally:
            self.running -= 1


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests.

    Yields:
        Path: A Path object pointing to the temporary directory.
            The directory is automatically cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Configuration rooted in the temporary directory with fast queue timings."""
    return Config(
        temp_dir=temp_dir / "work",
        queue=QueueConfig(
            max_concurrent_builds=3,
            max_attempts=2,
            backoff_delay_ms=10,
            build_timeout_ms=5000,
            lock_duration_ms=5000,
            stalled_interval_ms=50,
        ),
        storage=StorageConfig(
            base_path=temp_dir / "builds",
            records_path=temp_dir / "records",
        ),
    )


@pytest.fixture
def build_request():
    """A valid build request as the API layer would submit it."""
    return {
        "website_url": "https://acme.example",
        "app_name": "Acme Demo",
        "package_name": "com.acme.demo",
        "version_code": 3,
        "version_name": "1.2.0",
        "splash_background": "#1A2B3C",
    }


@pytest.fixture
def sample_image(temp_dir):
    """Create a 300x200 PNG to use as icon or splash source.

    Returns:
        Path: The path to the created image.
    """
    path = temp_dir / "source.png"
    Image.new("RGBA", (300, 200), (200, 30, 30, 255)).save(path, format="PNG")
    return path


@pytest.fixture
def make_toolchain(config):
    """Factory for FakeToolchain instances bound to the test configuration."""

    def factory(fail: bool = False, delay: float = 0.0, fail_first: int = 0) -> FakeToolchain:
        return FakeToolchain(config, fail=fail, delay=delay, fail_first=fail_first)

    return factory
