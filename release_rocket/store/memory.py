"""In-memory store with push notifications."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import structlog

from release_rocket.exceptions import NotFoundError, PersistenceError
from release_rocket.store.base import Predicate, Store, T, new_record_id

log = structlog.get_logger(__name__)


class InMemoryStore(Store[T]):
    """Store that keeps documents in a dict.

    Records are stored as documents and rebuilt on read, so callers never
    share instances with the store. Every write wakes all watchers.

    Example:
        >>> steps = InMemoryStore(WorkflowStep, kind="step")
        >>> step = await steps.create(WorkflowStep(release_id="rel-1", step_number=1))
        >>> (await steps.get(step.id)).step_number
        1
    """

    def __init__(self, record_type: type[T], kind: str = "record") -> None:
        super().__init__(poll_interval=0.0)
        self.record_type = record_type
        self.kind = kind
        self._documents: dict[str, dict[str, Any]] = {}
        self._version = 0
        self._changed = asyncio.Condition()

    def _load(self, document: dict[str, Any]) -> T:
        return self.record_type.model_validate(document)

    async def _commit(self, record_id: str, document: dict[str, Any] | None) -> None:
        async with self._changed:
            if document is None:
                self._documents.pop(record_id, None)
            else:
                self._documents[record_id] = document
            self._version += 1
            self._changed.notify_all()

    async def create(self, record: T) -> T:
        stored = record if record.id else record.model_copy(update={"id": new_record_id()})
        if stored.id in self._documents:
            raise PersistenceError(f"{self.kind[:1].upper()}{self.kind[1:]} already exists: {stored.id}")
        await self._commit(stored.id, stored.to_document())
        log.debug("record_created", kind=self.kind, record_id=stored.id)
        return self._load(self._documents[stored.id])

    async def update(self, record: T) -> T:
        if record.id not in self._documents:
            raise NotFoundError(self.kind, record.id)
        await self._commit(record.id, record.to_document())
        return self._load(self._documents[record.id])

    async def delete(self, record_id: str) -> bool:
        if record_id not in self._documents:
            return False
        await self._commit(record_id, None)
        log.debug("record_deleted", kind=self.kind, record_id=record_id)
        return True

    async def get(self, record_id: str) -> T | None:
        document = self._documents.get(record_id)
        return self._load(document) if document is not None else None

    async def list(self, predicate: Predicate[T] | None = None) -> list[T]:
        records = [self._load(d) for d in self._documents.values()]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    async def watch(self, predicate: Predicate[T] | None = None) -> AsyncIterator[list[T]]:
        """Yield the current snapshot, then a new one after every write."""
        seen = -1
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: self._version != seen)
                seen = self._version
            yield await self.list(predicate)
