"""
Cursor wrappers for blocking and asyncio driver cursors.

Both wrappers convert pyformat placeholders to the driver's style, always
hand the driver a parameter mapping (so ``%%`` is a literal percent sign
on every dialect), log SQL around each execution and add the elapsed time
to the owning connection's statistics.
"""
import logging
import time
from collections.abc import Mapping
from functools import wraps
from typing import Any

from recordmap.strategy import DatabaseStrategy

__all__ = ['Cursor', 'AsyncCursor', 'dumpsql', 'adumpsql']

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging SQL statements and their parameter count."""
    @wraps(func)
    def wrapper(self, operation: str, params: Mapping[str, Any] | None = None):
        start = time.time()
        count = len(params or ())
        logger.debug(f'SQL:\n{operation}\nparams: {count}')
        try:
            result = func(self, operation, params)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nparams: {count}')
            raise
        finally:
            elapsed = time.time() - start
            self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def adumpsql(func):
    """Asyncio variant of :func:`dumpsql`."""
    @wraps(func)
    async def wrapper(self, operation: str, params: Mapping[str, Any] | None = None):
        start = time.time()
        count = len(params or ())
        logger.debug(f'SQL:\n{operation}\nparams: {count}')
        try:
            result = await func(self, operation, params)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nparams: {count}')
            raise
        finally:
            elapsed = time.time() - start
            self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Blocking DB-API 2.0 cursor wrapper.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any, strategy: DatabaseStrategy) -> None:
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper
        self.strategy = strategy

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    def __enter__(self) -> 'Cursor':
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def description(self) -> Any:
        """Column descriptions for last query."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows produced/affected by last operation."""
        return self.dbapi_cursor.rowcount

    @dumpsql
    def execute(self, operation: str, params: Mapping[str, Any] | None = None) -> int:
        """Execute a statement and return the affected row count."""
        sql = self.strategy.standardize_sql(operation)
        self.dbapi_cursor.execute(sql, dict(params or {}))
        return self.dbapi_cursor.rowcount

    def fetchone(self) -> tuple | None:
        return self.dbapi_cursor.fetchone()

    def fetchall(self) -> list[tuple]:
        return self.dbapi_cursor.fetchall()

    def close(self) -> None:
        """Close cursor."""
        self.dbapi_cursor.close()


class AsyncCursor:
    """Asyncio cursor wrapper over psycopg ``AsyncCursor`` or ``aiosqlite.Cursor``.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any, strategy: DatabaseStrategy) -> None:
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper
        self.strategy = strategy

    def __getattr__(self, name: str) -> Any:
        return getattr(self.dbapi_cursor, name)

    async def __aenter__(self) -> 'AsyncCursor':
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def description(self) -> Any:
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        return self.dbapi_cursor.rowcount

    @adumpsql
    async def execute(self, operation: str, params: Mapping[str, Any] | None = None) -> int:
        """Execute a statement and return the affected row count."""
        sql = self.strategy.standardize_sql(operation)
        await self.dbapi_cursor.execute(sql, dict(params or {}))
        return self.dbapi_cursor.rowcount

    async def fetchone(self) -> tuple | None:
        return await self.dbapi_cursor.fetchone()

    async def fetchall(self) -> list[tuple]:
        return list(await self.dbapi_cursor.fetchall())

    async def close(self) -> None:
        await self.dbapi_cursor.close()
