"""
Abstract record store.

The engine needs nothing from persistence beyond create/read/update/delete
and a watch feed that republishes the collection whenever it changes.
Stores hold one collection of one record type each.

Watch Feed:
    ``watch()`` returns a fresh async generator on every call. The default
    implementation polls ``list()`` every ``poll_interval`` seconds and
    yields a snapshot whenever the (filtered) collection differs from the
    previous one. Stores with native change notification override it.

    Consumers must tolerate snapshots that are up to one interval stale::

        async for steps in step_store.watch(lambda s: s.release_id == release_id):
            render(sorted(steps, key=lambda s: s.step_number))
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any, Generic, TypeVar

import structlog

from release_rocket.models.domain import Record

log = structlog.get_logger(__name__)

T = TypeVar("T", bound=Record)

Predicate = Callable[[T], bool]


def new_record_id() -> str:
    """Generate an identifier for a new record."""
    return str(uuid.uuid4())


class Store(ABC, Generic[T]):
    """Contract for a collection of records addressed by ``id``.

    Records passed in are never mutated; methods return copies.
    """

    def __init__(self, poll_interval: float = 5.0) -> None:
        self.poll_interval = poll_interval

    @abstractmethod
    async def create(self, record: T) -> T:
        """Insert a new record.

        An empty ``id`` is replaced by a generated one.

        Returns:
            The stored record, with its id.

        Raises:
            PersistenceError: If a record with that id exists or the write fails.
        """
        pass

    @abstractmethod
    async def update(self, record: T) -> T:
        """Replace an existing record.

        Raises:
            NotFoundError: If no record has ``record.id``.
            PersistenceError: If the write fails.
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Remove a record. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def get(self, record_id: str) -> T | None:
        """Return the record with ``record_id``, or None."""
        pass

    @abstractmethod
    async def list(self, predicate: Predicate[T] | None = None) -> list[T]:
        """Return all records, optionally filtered."""
        pass

    async def watch(self, predicate: Predicate[T] | None = None) -> AsyncIterator[list[T]]:
        """Yield snapshots of the (filtered) collection as it changes.

        Polls ``list()``. The first snapshot is yielded immediately.
        """
        previous: list[dict[str, Any]] | None = None
        while True:
            records = await self.list(predicate)
            documents = [r.to_document() for r in records]
            if documents != previous:
                previous = documents
                yield records
            await asyncio.sleep(self.poll_interval)
