"""
JSON file store.

Each record lives in its own file, ``{directory}/{collection}/{id}.json``,
holding the record's camelCase document::

    .rocket/store/
        releases/3f2c...json
        steps/9a41...json
        github_configs/my-project.json

Writes go to a ``.tmp`` file first and are renamed into place, so a crash
mid-write never leaves a truncated record. Each record has its own
asyncio lock, held only for the duration of one write. The watch feed is
the polling feed of :class:`~release_rocket.store.base.Store`.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiofiles
import structlog

from release_rocket.exceptions import NotFoundError, PersistenceError
from release_rocket.store.base import Predicate, Store, T, new_record_id

log = structlog.get_logger(__name__)


class JsonFileStore(Store[T]):
    """Store one collection of records as JSON files on disk."""

    def __init__(
        self,
        directory: str | Path,
        collection: str,
        record_type: type[T],
        poll_interval: float = 5.0,
        kind: str | None = None,
    ) -> None:
        """Initialize the store, creating the collection directory.

        Args:
            directory: Root directory shared by all collections
            collection: Sub-directory for this collection (e.g. "steps")
            record_type: Record model stored in this collection
            poll_interval: Seconds between polls of the watch feed
            kind: Record kind used in error messages (defaults to the
                collection name without a trailing "s")
        """
        super().__init__(poll_interval=poll_interval)
        self.collection_dir = Path(directory) / collection
        self.collection_dir.mkdir(parents=True, exist_ok=True)
        self.record_type = record_type
        self.kind = kind or collection.rstrip("s")
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    async def _get_lock(self, record_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            if record_id not in self._locks:
                self._locks[record_id] = asyncio.Lock()
            return self._locks[record_id]

    def _path(self, record_id: str) -> Path:
        if not record_id or "/" in record_id or "\\" in record_id or record_id.startswith("."):
            raise PersistenceError(f"Invalid {self.kind} id: {record_id!r}")
        return self.collection_dir / f"{record_id}.json"

    async def _read(self, path: Path) -> T | None:
        """Load one record; None if the file was deleted before it could be read."""
        try:
            async with aiofiles.open(path) as f:
                content = await f.read()
            return self.record_type.model_validate(json.loads(content))
        except FileNotFoundError:
            log.debug("record_vanished", kind=self.kind, path=str(path))
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            raise PersistenceError(f"Corrupt {self.kind} record {path.name}: {e}") from e

    async def _write(self, record: T) -> None:
        path = self._path(record.id)
        tmp_path = path.with_suffix(".tmp")
        lock = await self._get_lock(record.id)
        async with lock:
            try:
                async with aiofiles.open(tmp_path, "w") as f:
                    await f.write(json.dumps(record.to_document(), indent=2))
                # Atomic on POSIX when both paths are on the same filesystem
                tmp_path.replace(path)
            except OSError as e:
                log.error("record_write_failed", kind=self.kind, record_id=record.id, error=str(e))
                raise PersistenceError(f"Cannot write {self.kind} {record.id}: {e}") from e

    async def create(self, record: T) -> T:
        stored = record if record.id else record.model_copy(update={"id": new_record_id()})
        if self._path(stored.id).exists():
            raise PersistenceError(f"{self.kind[:1].upper()}{self.kind[1:]} already exists: {stored.id}")
        await self._write(stored)
        log.debug("record_created", kind=self.kind, record_id=stored.id)
        return stored.model_copy(deep=True)

    async def update(self, record: T) -> T:
        if not self._path(record.id).exists():
            raise NotFoundError(self.kind, record.id)
        await self._write(record)
        return record.model_copy(deep=True)

    async def delete(self, record_id: str) -> bool:
        path = self._path(record_id)
        lock = await self._get_lock(record_id)
        async with lock:
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as e:
                raise PersistenceError(f"Cannot delete {self.kind} {record_id}: {e}") from e
        log.debug("record_deleted", kind=self.kind, record_id=record_id)
        return True

    async def get(self, record_id: str) -> T | None:
        path = self._path(record_id)
        if not path.exists():
            return None
        return await self._read(path)

    async def list(self, predicate: Predicate[T] | None = None) -> list[T]:
        records = []
        for path in sorted(self.collection_dir.glob("*.json")):
            record = await self._read(path)
            # Deleted between glob and read
            if record is None:
                continue
            if predicate is None or predicate(record):
                records.append(record)
        return records
