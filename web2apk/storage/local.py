"""
Local filesystem artifact store.

Keeps built packages under a base directory with a JSON metadata sidecar,
suitable for development and single-machine deployments.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..core.logging import get_logger
from ..core.types import utcnow
from .interface import ArtifactStore, StoredArtifact

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalArtifactStore(ArtifactStore):
    """Local filesystem artifact store."""

    def __init__(self, base_path: Path, download_base_url: str = "/downloads") -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for stored artifacts
            download_base_url: Prefix of the public download URL
        """
        self.base_path = base_path.resolve()
        self.download_base_url = download_base_url.rstrip("/")
        self._metadata_suffix = ".meta.json"

    async def _ensure_parent(self, path: Path) -> None:
        parent = path.parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        """Get full filesystem path for a key.

        Normalizes the key to prevent path traversal and ensures the resulting
        path is within the base storage directory.
        """
        clean_key = key.lstrip("/\\").replace("..", "").replace(":", "")
        full_path = (self.base_path / clean_key).resolve()

        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            clean_key = clean_key.replace("/", "_").replace("\\", "_")
            full_path = self.base_path / clean_key

        return full_path

    def _get_metadata_path(self, key: str) -> Path:
        return self._get_full_path(key + self._metadata_suffix)

    def artifact_key(self, build_id: str) -> str:
        return f"apks/{build_id}.apk"

    async def _store_metadata(self, key: str, metadata: dict[str, Any]) -> None:
        meta_path = self._get_metadata_path(key)
        await self._ensure_parent(meta_path)

        metadata["_stored_at"] = utcnow().isoformat()
        metadata["_key"] = key

        async with aiofiles.open(meta_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(metadata, indent=2, default=str))

    async def upload_artifact(self, path: Path, build_id: str) -> StoredArtifact:
        """Copy a package into the store, hashing it on the way.

        Args:
            path: Local package to store.
            build_id: Build the package belongs to.

        Returns:
            Descriptor of the stored package.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """
        key = self.artifact_key(build_id)
        full_path = self._get_full_path(key)
        await self._ensure_parent(full_path)

        digest = hashlib.sha256()
        size = 0
        async with aiofiles.open(path, "rb") as src, aiofiles.open(full_path, "wb") as dst:
            while chunk := await src.read(CHUNK_SIZE):
                digest.update(chunk)
                size += len(chunk)
                await dst.write(chunk)

        sha256 = digest.hexdigest()
        await self._store_metadata(
            key, {"build_id": build_id, "size_bytes": size, "hash": sha256, "source": str(path)}
        )

        url = f"{self.download_base_url}/{build_id}.apk"
        logger.info("Artifact stored", build_id=build_id, key=key, size_bytes=size)
        return StoredArtifact(location=key, url=url, size_bytes=size, sha256=sha256)

    async def delete_artifact(self, location: str) -> bool:
        """Delete a stored package and its metadata sidecar."""
        full_path = self._get_full_path(location)
        meta_path = self._get_metadata_path(location)

        deleted = False

        if full_path.exists():
            await aiofiles.os.remove(full_path)
            deleted = True

        if meta_path.exists():
            await aiofiles.os.remove(meta_path)

        return deleted

    def get_local_path(self, location: str) -> Path | None:
        """Filesystem path of a stored package if it exists."""
        full_path = self._get_full_path(location)
        if full_path.exists():
            return full_path
        return None
