"""
Persistence Provider Abstract Base Class

Defines the interface contract the rest of the application uses to store and
query JSON documents keyed by id. Both the in-memory provider (development,
tests) and the SQL provider (staging, production) implement it, so order,
reward and rating code never talks to a database client directly.

Contract:
    get(table, id)                       -> record | None
    query(table, filters, ...)           -> list of records
    insert(table, record)                -> stored record
    update(table, id, patch, expected)   -> stored record
        raises NotFoundError when the row does not exist
        raises ConflictError when ``expected`` fields no longer match
    subscribe(table, filters, on_change) -> unsubscribe callable
    atomic()                             -> async context manager; writes
                                            inside commit together or not at all

Change events are delivered after the write is committed. Inside ``atomic()``
they are queued and delivered once the block commits; a rolled back block
delivers nothing.
"""

import contextvars
import inspect
import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

logger = logging.getLogger(__name__)


Record = dict[str, Any]


@dataclass
class ChangeEvent:
    """
    A committed row change.

    Attributes:
        table: Table the change happened in
        kind: "insert" or "update"
        record: The row after the change
        previous: The row before the change (updates only)
    """
    table: str
    kind: str
    record: Record
    previous: Optional[Record] = None


ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    table: str
    filters: dict[str, Any]
    handler: ChangeHandler


def matches(record: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """Equality match of every filter field against the record."""
    if not filters:
        return True
    return all(record.get(key) == value for key, value in filters.items())


class BasePersistenceProvider(ABC):
    """
    Abstract base class for persistence providers.

    Subscriptions are handled here so both providers share the same
    delivery semantics.
    """

    def __init__(self):
        self._subscriptions: list[_Subscription] = []
        # Events queued by the atomic block running in the current task
        self._queued_events: contextvars.ContextVar[Optional[list[ChangeEvent]]] = (
            contextvars.ContextVar(f"{type(self).__name__}_events", default=None)
        )

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., "memory", "sql")."""
        pass

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[Record]:
        """Fetch one record by id, or None when it does not exist."""
        pass

    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        """Return records whose fields equal every value in ``filters``."""
        pass

    @abstractmethod
    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        """
        Store a new record.

        A record without an ``id`` gets a generated UUID. Inserting an id that
        already exists raises ConflictError.
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        """
        Apply ``patch`` to a record.

        Args:
            table: Table name
            record_id: Record id
            patch: Fields to overwrite
            expected: Fields that must still hold their prior values for the
                write to happen (compare-and-swap)

        Returns:
            The updated record

        Raises:
            NotFoundError: No record with that id
            ConflictError: A field in ``expected`` has changed
        """
        pass

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Group writes so they commit together or not at all."""
        pass

    async def health_check(self) -> bool:
        """Check backend connectivity."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]],
        on_change: ChangeHandler,
    ) -> Callable[[], None]:
        """
        Register ``on_change`` for committed changes to matching rows.

        ``on_change`` may be a plain function or a coroutine function.

        Returns:
            A callable that removes the subscription; calling it twice is safe.
        """
        subscription = _Subscription(table=table, filters=dict(filters or {}), handler=on_change)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} changes (filters={subscription.filters})")

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def _publish(self, event: ChangeEvent) -> None:
        """Deliver now, or queue until the surrounding atomic block commits."""
        queued = self._queued_events.get()
        if queued is not None:
            queued.append(event)
            return
        await self._deliver(event)

    async def _deliver(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.table != event.table or not matches(event.record, subscription.filters):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A failing subscriber must not fail a committed write
                logger.exception(
                    f"Change handler failed for {event.table} {event.kind} "
                    f"(id={event.record.get('id')})"
                )

    async def _deliver_all(self, events: list[ChangeEvent]) -> None:
        for event in events:
            await self._deliver(event)
