"""
Fake driver objects for exercising connection wrappers without a database.

Usage:
    async def test_cancel(fake_async_connection):
        cn, driver = fake_async_connection(rows=[(1,)], block_on='execute')
"""
import asyncio
from types import SimpleNamespace

import pytest
from recordmap.aio import AsyncConnectionWrapper


class FakeAsyncCursor:
    """Async cursor that serves canned rows and can stall on request."""

    def __init__(self, rows, block_on=None):
        self.rows = list(rows)
        self.block_on = block_on
        self.started = asyncio.Event()
        self.closed = False
        self.executed = []
        self.description = [('value', None, None, None, None, None, None)]
        self.rowcount = -1
        self._fetched = 0

    async def _maybe_block(self, stage):
        if self.block_on == stage:
            self.started.set()
            await asyncio.Event().wait()

    async def execute(self, sql, params=None):
        self.executed.append((sql, params))
        await self._maybe_block('execute')

    async def fetchone(self):
        if self._fetched >= len(self.rows):
            await self._maybe_block('fetch')
            return None
        row = self.rows[self._fetched]
        self._fetched += 1
        return row

    async def fetchall(self):
        rows, self.rows = self.rows[self._fetched:], []
        return rows

    async def close(self):
        self.closed = True


class FakeAsyncDriver:
    """Stands in for an aiosqlite connection."""

    def __init__(self, rows=(), block_on=None):
        self.cursors = []
        self._rows = rows
        self._block_on = block_on

    async def cursor(self):
        cursor = FakeAsyncCursor(self._rows, self._block_on)
        self.cursors.append(cursor)
        return cursor

    async def commit(self):
        pass

    async def rollback(self):
        pass


def _fake_sa_connection(dialect='sqlite'):
    engine = SimpleNamespace(dialect=SimpleNamespace(name=dialect), pool=None)
    return SimpleNamespace(engine=engine, closed=False)


@pytest.fixture
def fake_async_connection():
    """
    Factory for an AsyncConnectionWrapper over a fake SQLite driver.

    Returns
        Factory returning ``(wrapper, driver)``
    """
    def factory(rows=(), block_on=None):
        driver = FakeAsyncDriver(rows, block_on)
        return AsyncConnectionWrapper(_fake_sa_connection(), driver), driver

    return factory


@pytest.fixture
def fake_driver_connection():
    """
    Factory for bare objects whose type looks like a driver connection.

    Example usage:
        def test_detection(fake_driver_connection):
            pg_conn = fake_driver_connection('psycopg')
    """
    def factory(module='psycopg'):
        cls = type('Connection', (), {})
        cls.__module__ = module
        return cls()

    return factory
