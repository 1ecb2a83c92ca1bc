"""
SQLite-specific strategy implementation.

The stdlib ``sqlite3`` driver (and ``aiosqlite`` on top of it) expects
``:name`` placeholders, so pyformat statements are converted right before
execution. Connections run with ``isolation_level=None``; transactions are
opened explicitly with ``BEGIN IMMEDIATE`` so the write lock is taken up
front.

SQLite has no counterpart to PostgreSQL's ``xmax``: upsert outcomes are
derived by selecting the already present conflict keys inside the same
transaction as the upsert itself.
"""
import datetime
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa

from recordmap.sql import standardize_placeholders
from recordmap.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from recordmap.options import DatabaseOptions

logger = logging.getLogger(__name__)

BEGIN = 'BEGIN IMMEDIATE'


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def adapt_date(val: datetime.date) -> str:
    return val.isoformat()


def adapt_datetime(val: datetime.datetime) -> str:
    return val.isoformat(' ')


def register_type_adapters() -> None:
    """Register date adapters and converters with the sqlite3 module.

    Registration is global to the driver and idempotent.
    """
    sqlite3.register_adapter(datetime.date, adapt_date)
    sqlite3.register_adapter(datetime.datetime, adapt_datetime)
    sqlite3.register_converter('date', convert_date)
    sqlite3.register_converter('datetime', convert_datetime)
    sqlite3.register_converter('timestamp', convert_datetime)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    max_parameters = 32766

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def build_async_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        return sa.URL.create(drivername='sqlite+aiosqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        connect_args: dict[str, Any] = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            'isolation_level': None,
            }
        if options.timeout:
            connect_args['timeout'] = options.timeout
        return {'connect_args': connect_args}

    def standardize_sql(self, sql: str) -> str:
        """Convert pyformat placeholders to SQLite-style ``:name``.
        """
        return standardize_placeholders(sql, dialect='sqlite')

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        register_type_adapters()
        raw_conn.execute('PRAGMA foreign_keys = ON')
        raw_conn.isolation_level = None

    async def configure_async_connection(self, raw_conn: Any) -> None:
        """``isolation_level`` is fixed through connect args; aiosqlite
        connections may only be touched from their worker thread.
        """
        register_type_adapters()
        cursor = await raw_conn.execute('PRAGMA foreign_keys = ON')
        await cursor.close()

    def begin(self, raw_conn: Any) -> None:
        raw_conn.execute(BEGIN)

    def end(self, raw_conn: Any) -> None:
        """Nothing to restore; the connection never left auto-commit mode."""

    async def create_async_cursor(self, raw_conn: Any) -> Any:
        return await raw_conn.cursor()

    async def begin_async(self, raw_conn: Any) -> None:
        cursor = await raw_conn.execute(BEGIN)
        await cursor.close()

    async def end_async(self, raw_conn: Any) -> None:
        pass
