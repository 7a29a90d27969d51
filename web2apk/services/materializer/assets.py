"""
Raster asset generation for launcher icons and the splash logo.
"""

from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageOps

from ...core.exceptions import ResourceError

ICON_SIZES = {
    "mipmap-mdpi": 48,
    "mipmap-hdpi": 72,
    "mipmap-xhdpi": 96,
    "mipmap-xxhdpi": 144,
    "mipmap-xxxhdpi": 192,
}
ICON_FILENAME = "ic_launcher.png"
SPLASH_MAX_SIZE = (512, 512)


def _open_rgba(source: Path) -> Image.Image:
    try:
        with Image.open(source) as img:
            img.load()
            return img.convert("RGBA")
    except OSError as e:
        # Covers missing files and PIL.UnidentifiedImageError
        raise ResourceError(message=f"Cannot read image: {e}", path=str(source), cause=e)


def render_icon_variants(source: Path, res_dir: Path) -> list[Path]:
    """Write one square launcher icon per density bucket.

    Args:
        source: Uploaded icon image.
        res_dir: The project's ``res`` directory.

    Returns:
        Paths of the written icons, smallest first.

    Raises:
        ResourceError: If the source cannot be decoded or an icon cannot be written.
    """
    image = _open_rgba(source)
    written = []
    for folder, size in ICON_SIZES.items():
        target = res_dir / folder / ICON_FILENAME
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            image.resize((size, size), Image.Resampling.LANCZOS).save(target, format="PNG")
        except OSError as e:
            raise ResourceError(message=f"Cannot write icon: {e}", path=str(target), cause=e)
        written.append(target)
    return written


def render_splash(source: Path, target: Path) -> Path:
    """Scale the splash image to fit within 512x512, keeping its aspect ratio."""
    image = _open_rgba(source)
    fitted = ImageOps.contain(image, SPLASH_MAX_SIZE, Image.Resampling.LANCZOS)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fitted.save(target, format="PNG")
    except OSError as e:
        raise ResourceError(message=f"Cannot write splash image: {e}", path=str(target), cause=e)
    return target
