"""
SQL Persistence Provider

SQLAlchemy (async) implementation of the persistence interface, used in
staging and production (ENV_MODE != development).

Each table name maps to one ORM model in foodnow.models. Records cross the
interface as plain dicts of column values.

Conditional writes are a single UPDATE ... WHERE id = :id AND <expected>
statement. A rowcount of zero means either the row is gone or another writer
got there first; a follow-up lookup tells the two apart.
"""

import contextvars
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from foodnow.core.exceptions import ConflictError, NetworkError, NotFoundError
from foodnow.database import dispose_db, get_session_maker
from foodnow.models import (
    CustomerBadge,
    LoyaltyAccount,
    MenuItem,
    Order,
    PartnerApplication,
    Rating,
    RatingAggregate,
    RewardTransaction,
)
from foodnow.services.persistence.base import BasePersistenceProvider, ChangeEvent, Record

logger = logging.getLogger(__name__)


TABLES = {
    "orders": Order,
    "menu_items": MenuItem,
    "ratings": Rating,
    "rating_aggregates": RatingAggregate,
    "loyalty_accounts": LoyaltyAccount,
    "reward_transactions": RewardTransaction,
    "customer_badges": CustomerBadge,
    "applications": PartnerApplication,
}


def _model_for(table: str):
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _to_record(instance) -> Record:
    return {column.name: getattr(instance, column.name) for column in instance.__table__.columns}


class SQLPersistenceProvider(BasePersistenceProvider):
    """
    Persistence provider backed by the async SQLAlchemy engine.

    Args:
        session_maker: Session factory; defaults to the application's
            engine from foodnow.database
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        super().__init__()
        self._session_maker = session_maker or get_session_maker()
        # Session of the atomic block running in the current task
        self._current_session: contextvars.ContextVar[Optional[AsyncSession]] = (
            contextvars.ContextVar("sql_provider_session", default=None)
        )
        logger.info("SQLPersistenceProvider initialized")

    @property
    def provider_name(self) -> str:
        return "sql"

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[AsyncSession]:
        """Join the surrounding atomic block, or run in a transaction of our own."""
        session = self._current_session.get()
        if session is not None:
            yield session
            return

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError) as exc:
            logger.error(f"Database unavailable: {exc}")
            raise NetworkError("Database unavailable") from exc

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, table: str, record_id: str) -> Optional[Record]:
        model = _model_for(table)
        async with self._session_scope() as session:
            instance = await session.get(model, record_id, populate_existing=True)
            return _to_record(instance) if instance is not None else None

    async def query(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        model = _model_for(table)
        stmt = select(model)

        for key, value in (filters or {}).items():
            stmt = stmt.where(getattr(model, key) == value)

        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(
                column.desc() if descending else column.asc(),
                model.id.desc() if descending else model.id.asc(),
            )

        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_scope() as session:
            result = await session.execute(stmt)
            return [_to_record(instance) for instance in result.scalars().all()]

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        model = _model_for(table)
        values = dict(record)
        values.setdefault("id", str(uuid.uuid4()))

        try:
            async with self._session_scope() as session:
                instance = model(**values)
                session.add(instance)
                await session.flush()
                stored = _to_record(instance)
        except IntegrityError as exc:
            raise ConflictError(f"{table} record {values['id']} already exists", table=table) from exc

        await self._publish(ChangeEvent(table=table, kind="insert", record=stored))
        return stored

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        model = _model_for(table)

        stmt = update(model).where(model.id == record_id)
        for key, value in (expected or {}).items():
            stmt = stmt.where(getattr(model, key) == value)
        stmt = stmt.values(**dict(patch)).execution_options(synchronize_session=False)

        async with self._session_scope() as session:
            before = await session.get(model, record_id, populate_existing=True)
            previous = _to_record(before) if before is not None else None

            result = await session.execute(stmt)
            if result.rowcount == 0:
                if previous is None:
                    raise NotFoundError(f"{table} record {record_id} not found", table=table)
                raise ConflictError(
                    f"{table} record {record_id} was modified concurrently",
                    table=table,
                    expected=dict(expected or {}),
                )

            await session.refresh(before)
            stored = _to_record(before)

        await self._publish(
            ChangeEvent(table=table, kind="update", record=stored, previous=previous)
        )
        return stored

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Run the block in one database transaction."""
        if self._current_session.get() is not None:
            yield
            return

        events: list[ChangeEvent] = []
        events_token = self._queued_events.set(events)
        try:
            async with self._session_scope() as session:
                session_token = self._current_session.set(session)
                try:
                    yield
                finally:
                    self._current_session.reset(session_token)
        finally:
            self._queued_events.reset(events_token)

        await self._deliver_all(events)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            async with self._session_scope() as session:
                await session.execute(text("SELECT 1"))
            return True
        except NetworkError:
            return False

    async def close(self) -> None:
        await dispose_db()
