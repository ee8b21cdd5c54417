"""Shared test setup: a fresh in-memory SQLite database per test.

Async test bodies are driven with asyncio.run, the same way the services are
called from scripts:

    def test_something(with_db):
        async def body(db):
            ...
        with_db(body)
"""

import asyncio
from datetime import datetime, timezone

import aiosqlite
import pytest

from skilltrack.db.schema import create_schema

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


async def setup_test_db():
    """Initialize an in-memory database for tests."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await create_schema(db)
    return db


@pytest.fixture
def with_db():
    def runner(body):
        async def main():
            db = await setup_test_db()
            try:
                return await body(db)
            finally:
                await db.close()

        return asyncio.run(main())

    return runner


@pytest.fixture
def now():
    return NOW
