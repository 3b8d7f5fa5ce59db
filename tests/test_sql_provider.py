"""
SQL provider statements and session calls, checked against a recording
session so no database is needed.
"""

from contextlib import asynccontextmanager

import pytest

from foodnow.core.exceptions import ConflictError
from foodnow.models import LoyaltyAccount
from foodnow.services.persistence.sql import SQLPersistenceProvider


class _Result:
    def __init__(self, rowcount=0):
        self.rowcount = rowcount

    def scalars(self):
        return self

    def all(self):
        return []


class RecordingSession:
    def __init__(self, instance=None, rowcount=0):
        self.instance = instance
        self.rowcount = rowcount
        self.get_calls = []
        self.statements = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @asynccontextmanager
    async def begin(self):
        yield

    async def get(self, model, record_id, **kwargs):
        self.get_calls.append((model, record_id, kwargs))
        return self.instance

    async def execute(self, stmt):
        self.statements.append(stmt)
        return _Result(self.rowcount)


def _provider(session) -> SQLPersistenceProvider:
    return SQLPersistenceProvider(session_maker=lambda: session)


async def test_get_reloads_the_row():
    session = RecordingSession()

    assert await _provider(session).get("loyalty_accounts", "cust-1") is None

    [(model, record_id, kwargs)] = session.get_calls
    assert model is LoyaltyAccount
    assert kwargs == {"populate_existing": True}


async def test_conflicting_update_reads_the_current_row():
    account = LoyaltyAccount(id="cust-1", current_points=40, lifetime_points=40)
    session = RecordingSession(instance=account, rowcount=0)

    with pytest.raises(ConflictError):
        await _provider(session).update(
            "loyalty_accounts", "cust-1", {"current_points": 0}, expected={"current_points": 100}
        )

    assert all(kwargs == {"populate_existing": True} for _, _, kwargs in session.get_calls)


async def test_query_breaks_ties_on_id():
    session = RecordingSession()

    await _provider(session).query("reward_transactions", order_by="created_at", descending=True)

    [stmt] = session.statements
    assert "ORDER BY reward_transactions.created_at DESC, reward_transactions.id DESC" in str(stmt)
