"""
Storage interfaces.

Defines the abstract seams to the excluded collaborators: a blob store for build
artifacts and a durable store for build records with per-record conditional updates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Collection
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from ..models.build import BuildRecord, BuildStatus

RecordMutator = Callable[[BuildRecord], None]


class StoredArtifact(BaseModel):
    """Descriptor of an uploaded artifact."""

    location: str = Field(description="Store-specific handle used for deletion")
    url: str = Field(description="Download URL")
    size_bytes: int = Field(ge=0)
    sha256: str = Field(default="")


class ArtifactStore(ABC):
    """Abstract artifact storage backend."""

    @abstractmethod
    async def upload_artifact(self, path: Path, build_id: str) -> StoredArtifact:
        """Upload a built package.

        Args:
            path: Local path of the (signed or unsigned) package.
            build_id: Build the artifact belongs to.

        Returns:
            Descriptor with location, download URL and size.
        """
        ...

    @abstractmethod
    async def delete_artifact(self, location: str) -> bool:
        """Delete an artifact.

        Args:
            location: Location returned by ``upload_artifact``.

        Returns:
            True if the artifact was deleted, False if it did not exist.
        """
        ...


class BuildRepository(ABC):
    """Abstract build record store.

    ``update_build`` is the only write path used after creation. It applies a
    mutation atomically and only while the record's status is one of the
    expected values, which is what keeps a worker's terminal write from
    overwriting a user's cancellation.
    """

    @abstractmethod
    async def find_build(self, build_id: str) -> BuildRecord | None:
        """Load a record, or None when it does not exist."""
        ...

    @abstractmethod
    async def save_build(self, record: BuildRecord) -> None:
        """Insert or replace a record unconditionally."""
        ...

    @abstractmethod
    async def update_build(
        self,
        build_id: str,
        expected: Collection[BuildStatus] | None,
        mutate: RecordMutator,
    ) -> BuildRecord | None:
        """Conditionally mutate a record.

        Args:
            build_id: Record to update.
            expected: Statuses the record must currently have; None accepts any.
            mutate: Callback applied to a private copy of the record.

        Returns:
            The updated record, or None when the record is missing or its status
            did not match.
        """
        ...

    @abstractmethod
    async def list_builds(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[BuildRecord], int]:
        """List a user's non-deleted builds, newest first.

        Returns:
            The requested page and the total number of matching records.
        """
        ...

    @abstractmethod
    async def find_expired(self, now: datetime) -> list[BuildRecord]:
        """Records past their expiry that still reference an artifact."""
        ...

    async def delete_expired(self, now: datetime) -> int:
        """Soft-delete every expired record still holding an artifact.

        Returns:
            Number of records updated.
        """
        count = 0
        for record in await self.find_expired(now):
            updated = await self.update_build(
                record.build_id, None, lambda r: r.mark_artifact_removed(now)
            )
            if updated is not None:
                count += 1
        return count
