"""Unit tests for artifact and build record storage."""

import hashlib
import json
from datetime import timedelta

import pytest

from web2apk.core.types import utcnow
from web2apk.models.build import BuildConfig, BuildOutput, BuildRecord, BuildStatus
from web2apk.storage import InMemoryBuildRepository, JsonFileBuildRepository, LocalArtifactStore


def make_record(build_id: str, user_id: str = "u1") -> BuildRecord:
    config = BuildConfig(website_url="https://example.com", app_name="Example", package_name="com.example.app")
    record = BuildRecord(build_id=build_id, user_id=user_id, config=config)
    record.mark_queued(build_id)
    return record


@pytest.fixture(params=["memory", "json"])
def repository(request, temp_dir):
    if request.param == "memory":
        return InMemoryBuildRepository()
    return JsonFileBuildRepository(temp_dir / "records")


@pytest.mark.asyncio
class TestLocalArtifactStore:
    """Tests for local filesystem artifact storage."""

    async def test_upload_and_delete(self, temp_dir):
        """Uploading copies the package and reports its size, hash and URL."""
        source = temp_dir / "app-release.apk"
        source.write_bytes(b"PK\x03\x04" + b"x" * 2048)
        store = LocalArtifactStore(temp_dir / "store", "/downloads/")

        stored = await store.upload_artifact(source, "build-1")

        assert stored.location == "apks/build-1.apk"
        assert stored.url == "/downloads/build-1.apk"
        assert stored.size_bytes == 2052
        assert stored.sha256 == hashlib.sha256(source.read_bytes()).hexdigest()
        assert store.get_local_path(stored.location).read_bytes() == source.read_bytes()

        metadata = json.loads((temp_dir / "store" / "apks" / "build-1.apk.meta.json").read_text())
        assert metadata["build_id"] == "build-1"

        assert await store.delete_artifact(stored.location)
        assert store.get_local_path(stored.location) is None
        assert not await store.delete_artifact(stored.location)

    async def test_path_traversal_stays_in_base(self, temp_dir):
        store = LocalArtifactStore(temp_dir / "store")
        path = store._get_full_path("../../etc/passwd")
        assert path.is_relative_to(store.base_path)


@pytest.mark.asyncio
class TestBuildRepository:
    """Tests shared by both record repositories."""

    async def test_save_and_find(self, repository):
        await repository.save_build(make_record("b1"))

        loaded = await repository.find_build("b1")
        assert loaded is not None
        assert loaded.status == BuildStatus.QUEUED
        assert await repository.find_build("missing") is None

    async def test_conditional_update(self, repository):
        """Updates apply only while the record has an expected status."""
        await repository.save_build(make_record("b1"))

        cancelled = await repository.update_build("b1", {BuildStatus.QUEUED}, lambda r: r.mark_cancelled())
        assert cancelled is not None
        assert cancelled.status == BuildStatus.CANCELLED

        # A late worker write must not overwrite the cancellation
        result = await repository.update_build(
            "b1", {BuildStatus.BUILDING}, lambda r: r.mark_failed("boom", "BUILD_ERROR")
        )
        assert result is None
        assert (await repository.find_build("b1")).status == BuildStatus.CANCELLED

    async def test_update_missing_record(self, repository):
        assert await repository.update_build("nope", None, lambda r: r.mark_deleted()) is None

    async def test_returned_records_are_copies(self, repository):
        await repository.save_build(make_record("b1"))
        loaded = await repository.find_build("b1")
        loaded.progress = 99
        assert (await repository.find_build("b1")).progress == 0

    async def test_list_builds_pages_and_excludes_deleted(self, repository):
        for i in range(5):
            await repository.save_build(make_record(f"b{i}"))
        await repository.save_build(make_record("other", user_id="u2"))
        await repository.update_build("b0", None, lambda r: r.mark_deleted())

        first, total = await repository.list_builds("u1", page=1, limit=3)
        second, _ = await repository.list_builds("u1", page=2, limit=3)

        assert total == 4
        assert len(first) == 3
        assert len(second) == 1
        ids = {r.build_id for r in first + second}
        assert ids == {"b1", "b2", "b3", "b4"}

    async def test_expired_records(self, repository):
        now = utcnow()
        output = BuildOutput(location="apks/old.apk", size_bytes=10, download_url="/downloads/old.apk")

        old = make_record("old")
        old.mark_completed(output, retention_days=1, now=now - timedelta(days=2))
        fresh = make_record("fresh")
        fresh.mark_completed(output, retention_days=365, now=now)
        for record in (old, fresh):
            await repository.save_build(record)

        expired = await repository.find_expired(now)
        assert [r.build_id for r in expired] == ["old"]

        assert await repository.delete_expired(now) == 1
        swept = await repository.find_build("old")
        assert swept.is_deleted
        assert swept.output.location is None
        assert await repository.find_expired(now) == []
