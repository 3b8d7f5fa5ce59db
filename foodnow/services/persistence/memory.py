"""
In-Memory Persistence Provider

Dictionary-backed implementation of the persistence interface.
Used in development mode (ENV_MODE=development) and by the test suite to:
    - Run the complete order flow without a database
    - Exercise conditional writes and rollbacks deterministically
    - Simulate flaky connectivity with a configurable failure rate

Records are deep-copied on the way in and out, so callers can never mutate
stored state by accident.
"""

import asyncio
import copy
import random
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from foodnow.core.exceptions import ConflictError, NetworkError, NotFoundError
from foodnow.services.persistence.base import (
    BasePersistenceProvider,
    ChangeEvent,
    Record,
    matches,
)

logger = logging.getLogger(__name__)


class InMemoryPersistenceProvider(BasePersistenceProvider):
    """
    In-memory implementation of the persistence provider.

    Attributes:
        failure_rate: Probability that a call raises NetworkError (0.0-1.0)

    Example:
        >>> store = InMemoryPersistenceProvider()
        >>> order = await store.insert("orders", {"status": "pending"})
        >>> await store.update("orders", order["id"], {"status": "confirmed"},
        ...                    expected={"status": "pending"})
    """

    def __init__(self, failure_rate: float = 0.0):
        super().__init__()
        self.failure_rate = failure_rate
        self._tables: dict[str, dict[str, Record]] = {}
        self._lock = asyncio.Lock()

        logger.info(f"InMemoryPersistenceProvider initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "memory"

    def _maybe_fail(self) -> None:
        if self.failure_rate and random.random() < self.failure_rate:
            raise NetworkError("Simulated persistence outage")

    def _table(self, table: str) -> dict[str, Record]:
        return self._tables.setdefault(table, {})

    @asynccontextmanager
    async def _write_guard(self) -> AsyncIterator[None]:
        # Writes inside an atomic block already hold the lock
        if self._queued_events.get() is not None:
            yield
            return
        async with self._lock:
            yield

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, table: str, record_id: str) -> Optional[Record]:
        self._maybe_fail()
        record = self._table(table).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        self._maybe_fail()
        rows = [r for r in self._table(table).values() if matches(r, filters)]

        if order_by:
            # None sorts first ascending, last descending. Ties keep insertion
            # order ascending and come newest first descending.
            if descending:
                rows.reverse()
            rows.sort(
                key=lambda r: (r.get(order_by) is not None, r.get(order_by)),
                reverse=descending,
            )

        if limit is not None:
            rows = rows[:limit]

        return copy.deepcopy(rows)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        self._maybe_fail()
        stored = copy.deepcopy(dict(record))
        stored.setdefault("id", str(uuid.uuid4()))

        async with self._write_guard():
            rows = self._table(table)
            if stored["id"] in rows:
                raise ConflictError(f"{table} record {stored['id']} already exists", table=table)
            rows[stored["id"]] = stored

        await self._publish(ChangeEvent(table=table, kind="insert", record=copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        self._maybe_fail()

        async with self._write_guard():
            rows = self._table(table)
            current = rows.get(record_id)
            if current is None:
                raise NotFoundError(f"{table} record {record_id} not found", table=table)

            if expected and not matches(current, expected):
                actual = {key: current.get(key) for key in expected}
                raise ConflictError(
                    f"{table} record {record_id} was modified concurrently",
                    table=table,
                    expected=dict(expected),
                    actual=actual,
                )

            previous = copy.deepcopy(current)
            current.update(copy.deepcopy(dict(patch)))
            updated = copy.deepcopy(current)

        await self._publish(
            ChangeEvent(table=table, kind="update", record=updated, previous=previous)
        )
        return copy.deepcopy(updated)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """
        Snapshot every table, run the block, restore the snapshot on error.

        Blocks are serialized with a lock; writes outside a block also take
        the lock, so a rollback can never discard another task's write.
        """
        if self._queued_events.get() is not None:
            # Nested block joins the outer one
            yield
            return

        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            events: list[ChangeEvent] = []
            token = self._queued_events.set(events)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                logger.debug(f"Atomic block rolled back ({len(events)} queued events dropped)")
                raise
            finally:
                self._queued_events.reset(token)

        await self._deliver_all(events)

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def seed(self, table: str, *records: Mapping[str, Any]) -> list[Record]:
        """Insert records synchronously without publishing change events."""
        stored = []
        for record in records:
            row = copy.deepcopy(dict(record))
            row.setdefault("id", str(uuid.uuid4()))
            self._table(table)[row["id"]] = row
            stored.append(copy.deepcopy(row))
        return stored

    def reset(self) -> None:
        """Drop all data and subscriptions."""
        self._tables.clear()
        self._subscriptions.clear()
