"""
Build record repositories.

``InMemoryBuildRepository`` serves tests and one-shot CLI builds;
``JsonFileBuildRepository`` keeps one JSON document per record on disk. Both
serialize conditional updates through a single asyncio lock, which makes every
read-check-write atomic within the owning process.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from ..models.build import BuildRecord, BuildStatus
from .interface import BuildRepository, RecordMutator


def _page(records: list[BuildRecord], page: int, limit: int) -> list[BuildRecord]:
    page = max(page, 1)
    start = (page - 1) * limit
    return records[start:start + limit]


def _expired(records: list[BuildRecord], now: datetime) -> list[BuildRecord]:
    return [
        r for r in records
        if r.expires_at is not None and r.expires_at < now and r.output.location
    ]


class InMemoryBuildRepository(BuildRepository):
    """Process-local record store."""

    def __init__(self) -> None:
        self._records: dict[str, BuildRecord] = {}
        self._lock = asyncio.Lock()

    async def find_build(self, build_id: str) -> BuildRecord | None:
        record = self._records.get(build_id)
        return record.model_copy(deep=True) if record else None

    async def save_build(self, record: BuildRecord) -> None:
        async with self._lock:
            self._records[record.build_id] = record.model_copy(deep=True)

    async def update_build(
        self,
        build_id: str,
        expected: Collection[BuildStatus] | None,
        mutate: RecordMutator,
    ) -> BuildRecord | None:
        async with self._lock:
            current = self._records.get(build_id)
            if current is None:
                return None
            if expected is not None and current.status not in expected:
                return None
            updated = current.model_copy(deep=True)
            mutate(updated)
            self._records[build_id] = updated
            return updated.model_copy(deep=True)

    async def list_builds(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[BuildRecord], int]:
        matching = sorted(
            (r for r in self._records.values() if r.user_id == user_id and not r.is_deleted),
            key=lambda r: r.created_at,
            reverse=True,
        )
        return [r.model_copy(deep=True) for r in _page(matching, page, limit)], len(matching)

    async def find_expired(self, now: datetime) -> list[BuildRecord]:
        return [r.model_copy(deep=True) for r in _expired(list(self._records.values()), now)]


class JsonFileBuildRepository(BuildRepository):
    """Record store keeping ``<build_id>.json`` documents in a directory."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path.resolve()
        self._lock = asyncio.Lock()

    def _path(self, build_id: str) -> Path:
        safe_id = build_id.replace("/", "_").replace("\\", "_").replace("..", "")
        return self.base_path / f"{safe_id}.json"

    async def _read(self, path: Path) -> BuildRecord | None:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return BuildRecord.model_validate_json(await f.read())

    async def _write(self, record: BuildRecord) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        path = self._path(record.build_id)
        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(record.model_dump_json(indent=2))
        # Readers never observe a half-written document
        await aiofiles.os.replace(tmp_path, path)

    async def _read_all(self) -> list[BuildRecord]:
        if not self.base_path.exists():
            return []
        records = []
        for path in sorted(self.base_path.glob("*.json")):
            record = await self._read(path)
            if record is not None:
                records.append(record)
        return records

    async def find_build(self, build_id: str) -> BuildRecord | None:
        return await self._read(self._path(build_id))

    async def save_build(self, record: BuildRecord) -> None:
        async with self._lock:
            await self._write(record)

    async def update_build(
        self,
        build_id: str,
        expected: Collection[BuildStatus] | None,
        mutate: RecordMutator,
    ) -> BuildRecord | None:
        async with self._lock:
            record = await self._read(self._path(build_id))
            if record is None:
                return None
            if expected is not None and record.status not in expected:
                return None
            mutate(record)
            await self._write(record)
            return record

    async def list_builds(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[BuildRecord], int]:
        matching = sorted(
            (r for r in await self._read_all() if r.user_id == user_id and not r.is_deleted),
            key=lambda r: r.created_at,
            reverse=True,
        )
        return _page(matching, page, limit), len(matching)

    async def find_expired(self, now: datetime) -> list[BuildRecord]:
        return _expired(await self._read_all(), now)
