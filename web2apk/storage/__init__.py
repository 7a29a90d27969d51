"""Storage abstraction for web2apk."""

from .interface import ArtifactStore, BuildRepository, StoredArtifact
from .local import LocalArtifactStore
from .records import InMemoryBuildRepository, JsonFileBuildRepository

__all__ = [
    "ArtifactStore",
    "BuildRepository",
    "StoredArtifact",
    "LocalArtifactStore",
    "InMemoryBuildRepository",
    "JsonFileBuildRepository",
]
