"""
Read-only Android project template.

The template is a fixed Gradle project shipped inside this package. Builds never
write to it; they copy it into a scratch workspace first.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from ...core.exceptions import ResourceError

PACKAGED_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "template" / "android"

# Template-relative locations of every file the materializer touches
MANIFEST_PATH = Path("app/src/main/AndroidManifest.xml")
BUILD_DESCRIPTOR_PATH = Path("app/build.gradle")
STRINGS_PATH = Path("app/src/main/res/values/strings.xml")
COLORS_PATH = Path("app/src/main/res/values/colors.xml")
ACTIVITY_PATH = Path("app/src/main/kotlin/MainActivity.kt")
RES_DIR = Path("app/src/main/res")
SPLASH_IMAGE_PATH = RES_DIR / "drawable" / "splash_logo.png"
UNSIGNED_ARTIFACT_PATH = Path("app/build/outputs/apk/release/app-release-unsigned.apk")

REQUIRED_FILES = (
    MANIFEST_PATH,
    BUILD_DESCRIPTOR_PATH,
    STRINGS_PATH,
    COLORS_PATH,
    ACTIVITY_PATH,
)


class TemplateStore:
    """Immutable source tree for materialization."""

    def __init__(self, root: Path | None = None, driver_name: str = "gradlew") -> None:
        self.root = (root or PACKAGED_TEMPLATE_DIR).resolve()
        self.driver_name = driver_name

    def validate(self) -> None:
        """Check the template has every file the build pipeline patches.

        Raises:
            ResourceError: If the template directory or a required file is missing.
        """
        if not self.root.is_dir():
            raise ResourceError(message="Template directory not found", path=str(self.root))
        for relative in (*REQUIRED_FILES, Path(self.driver_name)):
            if not (self.root / relative).is_file():
                raise ResourceError(message="Template file missing", path=str(self.root / relative))

    def files(self) -> list[Path]:
        """Template-relative paths of all files, sorted."""
        return sorted(p.relative_to(self.root) for p in self.root.rglob("*") if p.is_file())

    def checksum(self) -> str:
        """SHA-256 over every file's relative path, mode and content."""
        digest = hashlib.sha256()
        for relative in self.files():
            path = self.root / relative
            digest.update(relative.as_posix().encode("utf-8"))
            digest.update(oct(path.stat().st_mode & 0o777).encode("ascii"))
            with open(path, "rb") as f:
                while chunk := f.read(8192):
                    digest.update(chunk)
        return digest.hexdigest()
