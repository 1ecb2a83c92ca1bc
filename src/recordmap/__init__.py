"""
Record mapping for PostgreSQL and SQLite.

Plain dataclasses are mapped to tables by naming convention plus a few
markers, and every statement is synthesized from that mapping.

All record operations can be called either as:
- Module functions: recordmap.insert(cn, person)
- Connection methods: cn.insert(person)

The module functions forward to the connection and work for blocking and
asyncio connections alike (the latter return awaitables).
"""
__version__ = '0.1.0'

from collections.abc import Iterable
from typing import Any

from recordmap.aio import AsyncConnectionWrapper, connect_async
from recordmap.cache import clear_caches
from recordmap.connection import ConnectionWrapper, connect, dispose_all_engines
from recordmap.exceptions import BackendError, DatabaseError, DbConnectionError
from recordmap.exceptions import IntegrityError, KeyArityMismatchError
from recordmap.exceptions import MissingKeyError, OperationalError
from recordmap.exceptions import ProgrammingError, UniqueViolation, ValidationError
from recordmap.fields import field, table
from recordmap.metadata import FieldDescriptor, TypeMetadata, TypeRegistry
from recordmap.metadata import default_registry
from recordmap.naming import to_column_name
from recordmap.options import DatabaseOptions
from recordmap.transaction import AsyncTransaction, Transaction

Connection = ConnectionWrapper | AsyncConnectionWrapper


def get(cn: Connection, cls: type, *ids: Any) -> Any:
    """Fetch a record by its key fields.
    """
    return cn.get(cls, *ids)


def insert(cn: Connection, record: Any) -> Any:
    """Insert a record, reading generated fields back into it.
    """
    return cn.insert(record)


def insert_many(cn: Connection, records: Iterable[Any], batch_size: int | None = None) -> Any:
    return cn.insert_many(records, batch_size=batch_size)


def insert_if_missing(cn: Connection, record: Any) -> Any:
    return cn.insert_if_missing(record)


def insert_many_if_missing(cn: Connection, records: Iterable[Any],
                           batch_size: int | None = None) -> Any:
    return cn.insert_many_if_missing(records, batch_size=batch_size)


def upsert(cn: Connection, record: Any) -> Any:
    """Insert or update a record; True when it was inserted.
    """
    return cn.upsert(record)


def upsert_many(cn: Connection, records: Iterable[Any], batch_size: int | None = None) -> Any:
    return cn.upsert_many(records, batch_size=batch_size)


def update(cn: Connection, record: Any) -> Any:
    return cn.update(record)


def delete(cn: Connection, record: Any) -> Any:
    return cn.delete(record)


def execute(cn: Connection, sql: str, args: Any = None) -> Any:
    """Execute a SQL statement and return affected row count.
    """
    return cn.execute(sql, args)


def query(cn: Connection, cls: type, sql: str, args: Any = None) -> Any:
    """Stream typed records from a SELECT.
    """
    return cn.query(cls, sql, args)


def query_assoc(cn: Connection, sql: str, args: Any = None) -> Any:
    return cn.query_assoc(sql, args)


def query_array(cn: Connection, sql: str, args: Any = None) -> Any:
    return cn.query_array(sql, args)


def scalar(cn: Connection, sql: str, args: Any = None) -> Any:
    """Return the first column of the first row, or None.
    """
    return cn.scalar(sql, args)


__all__ = [
    # connections
    'connect',
    'connect_async',
    'dispose_all_engines',
    'ConnectionWrapper',
    'AsyncConnectionWrapper',
    'DatabaseOptions',
    'Transaction',
    'AsyncTransaction',
    # mapping
    'field',
    'table',
    'to_column_name',
    'FieldDescriptor',
    'TypeMetadata',
    'TypeRegistry',
    'default_registry',
    'clear_caches',
    # operations
    'get',
    'insert',
    'insert_many',
    'insert_if_missing',
    'insert_many_if_missing',
    'upsert',
    'upsert_many',
    'update',
    'delete',
    'execute',
    'query',
    'query_assoc',
    'query_array',
    'scalar',
    # exceptions
    'DatabaseError',
    'ValidationError',
    'MissingKeyError',
    'KeyArityMismatchError',
    'BackendError',
    'DbConnectionError',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
    'UniqueViolation',
]
