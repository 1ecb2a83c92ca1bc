"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class that runs record operations over a
   SQLAlchemy-managed driver connection
3. Engine creation and management through a thread-safe registry

The ConnectionWrapper is the primary database client, providing methods like:
- get(cls, *ids) - Fetch a record by its key fields
- insert(record) / insert_many(records) - Insert records, reading back generated fields
- upsert(record) / upsert_many(records) - Insert or update, reporting inserted rows
- query(cls, sql, args) - Stream typed records from hand-written SQL
"""
import atexit
import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import nullcontext
from typing import Any, Self

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from recordmap import orm
from recordmap.cursor import Cursor
from recordmap.metadata import TypeRegistry, default_registry
from recordmap.options import DatabaseOptions
from recordmap.params import bind_args
from recordmap.rows import RecordBuilder, column_names, convert_value, iter_rows
from recordmap.rows import to_array, to_dict
from recordmap.sql import BoundStatement
from recordmap.strategy import DatabaseStrategy, get_db_strategy, get_strategy
from recordmap.transaction import Transaction
from recordmap.utils import get_dialect_name

__all__ = [
    'ConnectionWrapper',
    'connect',
    'configure_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[tuple, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions, asyncio: bool = False) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    strategy = get_strategy(options.drivername)
    if asyncio:
        return strategy.build_async_connection_url(options)
    return strategy.build_connection_url(options)


def pool_kwargs(options: DatabaseOptions) -> dict[str, Any]:
    """Pooling kwargs for ``create_engine``; NullPool unless pooling is requested."""
    if not options.use_pool:
        return {'poolclass': NullPool}
    return {
        'pool_size': options.pool_max_connections,
        'pool_recycle': options.pool_max_idle_time,
        'pool_timeout': options.pool_wait_timeout,
        'max_overflow': 10,
        'pool_pre_ping': True,
        'pool_reset_on_return': 'rollback',
        }


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Any] = sa.create_engine,
                           asyncio: bool = False, **kwargs: Any) -> Any:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = (options, asyncio, tuple(sorted(kwargs)))

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        url = create_url_from_options(options, asyncio=asyncio)
        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(get_strategy(options.drivername).get_engine_kwargs(options))
        engine_kwargs.update(pool_kwargs(options))
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all blocking engines in the registry.

    Asyncio engines are only dropped from the registry; their pools are
    released when the event loop that created them closes.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            if isinstance(engine, Engine):
                engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection and runs record operations on it.

    This class:
    1. Tracks statement counts and timing
    2. Manages connection lifecycle with SQLAlchemy pooling
    3. Supports context manager protocol for explicit resource management
    4. Commits after each write unless a :class:`Transaction` is active
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 options: DatabaseOptions | None = None,
                 registry: TypeRegistry | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dbapi_connection = sa_connection.connection.driver_connection
        self.registry = registry if registry is not None else default_registry()
        self.strategy: DatabaseStrategy = get_db_strategy(sa_connection)
        self.calls = 0
        self.time = 0.0
        self.in_transaction = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'{type(self).__name__}(dialect={self.dialect!r}, calls={self.calls})'

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self.strategy.dialect_name

    @property
    def is_pooled(self) -> bool:
        """Check if this connection is using SQLAlchemy's connection pooling
        """
        return not isinstance(self.engine.pool, NullPool)

    @property
    def closed(self) -> bool:
        return self.sa_connection.closed

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def cursor(self) -> Cursor:
        """Get a wrapped cursor for this connection
        """
        return Cursor(self.strategy.create_cursor(self.dbapi_connection), self, self.strategy)

    def commit(self) -> None:
        """Commit the driver connection; a no-op in auto-commit mode.
        """
        self.dbapi_connection.commit()

    def rollback(self) -> None:
        self.dbapi_connection.rollback()

    def transaction(self) -> Transaction:
        """Start a transaction spanning several operations.

        Examples
            with cn.transaction() as tx:
                tx.insert(person)
                tx.update(car)
        """
        return Transaction(self)

    def close(self) -> None:
        """Close the SQLAlchemy connection and return it to its pool
        """
        if self.sa_connection.closed:
            return
        self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per query)')

    def _atomic(self, needed: bool = True):
        if self.in_transaction or not needed:
            return nullcontext()
        return self.transaction()

    def _write(self, statement: BoundStatement) -> int:
        with self.cursor() as cursor:
            rowcount = cursor.execute(statement.sql, statement.params)
        if not self.in_transaction:
            self.commit()
        return rowcount

    def _fetch(self, statement: BoundStatement) -> list[tuple]:
        with self.cursor() as cursor:
            cursor.execute(statement.sql, statement.params)
            rows = cursor.fetchall()
        if not self.in_transaction:
            self.commit()
        return rows

    def _run_batch(self, plan: 'orm.BatchPlan | None') -> int:
        if plan is None:
            logger.debug('Skipping insert of empty rows')
            return 0
        total = 0
        with self._atomic(plan.needs_transaction):
            for step in plan.steps:
                total += self._write(step.statement)
        return total

    def _run_upsert(self, plan: 'orm.BatchPlan | None') -> list[bool]:
        if plan is None:
            logger.debug('Skipping upsert of empty rows')
            return []
        outcomes: list[bool] = []
        with self._atomic(plan.needs_transaction):
            for step in plan.steps:
                with self.cursor() as cursor:
                    existing = []
                    if step.precheck:
                        cursor.execute(step.precheck, step.statement.params)
                        existing = cursor.fetchall()
                    cursor.execute(step.statement.sql, step.statement.params)
                    if self.strategy.reports_upsert_outcome:
                        outcomes.extend(bool(row[0]) for row in cursor.fetchall())
                    elif plan.conflict:
                        outcomes.extend(orm.upsert_outcomes(plan, step, existing))
                    else:
                        outcomes.extend([True] * step.count)
        if not self.in_transaction:
            self.commit()
        return outcomes

    # record operations

    def get(self, cls: type, *ids: Any) -> Any | None:
        """Fetch the record of type ``cls`` whose key fields equal ``ids``.

        Raises
            MissingKeyError: If ``cls`` declares no key fields
            KeyArityMismatchError: If the number of ids differs from the number of keys
        """
        meta = self.registry.get(cls)
        statement = orm.plan_get(self.strategy, meta, ids)
        with self.cursor() as cursor:
            cursor.execute(statement.sql, statement.params)
            row = cursor.fetchone()
            if row is None:
                return None
            return RecordBuilder(meta, column_names(cursor))(row)

    def insert(self, record: Any) -> int:
        """Insert a record and read its generated fields back into it.
        """
        meta = orm.record_meta(self.registry, record, 'insert')
        if not meta.generated:
            return self.insert_many([record])

        returning = [g.column for g in meta.generated]
        statement = orm.plan_insert_returning(self.strategy, meta, record, meta.table, returning)
        rows = self._fetch(statement)
        for desc, value in zip(meta.generated, rows[0]):
            setattr(record, desc.name, convert_value(desc, value))
        return 1

    def insert_many(self, records: Iterable[Any], batch_size: int | None = None) -> int:
        """Insert records of one type; generated fields are not read back.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT, records,
                              batch_size=batch_size)
        return self._run_batch(plan)

    def insert_if_missing(self, record: Any) -> int:
        """Insert a record unless a row with the same keys exists.
        """
        return self.insert_many_if_missing([record])

    def insert_many_if_missing(self, records: Iterable[Any], batch_size: int | None = None) -> int:
        """Insert the records whose keys are not present yet; returns rows inserted.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT_IF_MISSING, records,
                              batch_size=batch_size)
        return self._run_batch(plan)

    def upsert(self, record: Any) -> bool:
        """Insert or update a record by its keys; True when a row was inserted.
        """
        return self.upsert_many([record])[0]

    def upsert_many(self, records: Iterable[Any], batch_size: int | None = None) -> list[bool]:
        """Insert or update records by their keys.

        Returns one flag per record in input order, True for inserted rows.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.UPSERT, records,
                              batch_size=batch_size)
        return self._run_upsert(plan)

    def update(self, record: Any) -> int:
        """Update every writable field of the row matching the record's keys.
        """
        return self._write(orm.plan_update_by_key(self.strategy, self.registry, record))

    def delete(self, record: Any) -> int:
        """Delete the row matching the record's keys.
        """
        return self._write(orm.plan_delete_by_key(self.strategy, self.registry, record))

    # table operations

    def insert_row(self, table: str, record: Any) -> int:
        """Insert one record or dict into ``table``.
        """
        return self.insert_rows(table, [record])

    def insert_rows(self, table: str, records: Iterable[Any], batch_size: int | None = None) -> int:
        """Insert records or dicts of one shape into ``table``.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT, records,
                              table=table, batch_size=batch_size)
        return self._run_batch(plan)

    def insert_row_returning(self, table: str, record: Any, returning: str | Sequence[str]) -> Any:
        """Insert one row and return the ``returning`` column values.

        A single column name returns its value; a list returns a tuple.
        """
        statement = orm.plan_row_returning(self.strategy, self.registry, table, record, returning)
        row = self._fetch(statement)[0]
        if isinstance(returning, str) and ',' not in returning:
            return row[0]
        return tuple(row)

    def insert_row_if_missing(self, table: str, record: Any, conflict: str | Sequence[str]) -> int:
        return self.insert_rows_if_missing(table, [record], conflict)

    def insert_rows_if_missing(self, table: str, records: Iterable[Any],
                               conflict: str | Sequence[str], batch_size: int | None = None) -> int:
        """Insert rows not colliding on ``conflict``; returns rows inserted.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT_IF_MISSING, records,
                              table=table, conflict=conflict, batch_size=batch_size)
        return self._run_batch(plan)

    def upsert_row(self, table: str, record: Any, conflict: str | Sequence[str]) -> bool:
        return self.upsert_rows(table, [record], conflict)[0]

    def upsert_rows(self, table: str, records: Iterable[Any],
                    conflict: str | Sequence[str], batch_size: int | None = None) -> list[bool]:
        """Insert or update rows by ``conflict`` columns; one inserted flag per row.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.UPSERT, records,
                              table=table, conflict=conflict, batch_size=batch_size)
        return self._run_upsert(plan)

    def update_rows(self, table: str, record: Any, where: str, args: Any = None) -> int:
        """Set the writable fields of ``record`` on every row matching ``where``.
        """
        return self._write(orm.plan_update(self.strategy, self.registry, table, record, where, args))

    def delete_rows(self, table: str, where: str, args: Any = None) -> int:
        """Delete every row of ``table`` matching ``where``.
        """
        return self._write(orm.plan_delete(self.strategy, self.registry, table, where, args))

    # raw SQL

    def execute(self, sql: str, args: Any = None) -> int:
        """Execute a SQL statement and return the affected row count.
        """
        return self._write(BoundStatement(sql, bind_args(args, self.registry)))

    def _select(self, sql: str, args: Any, converter: Callable[[list[str]], Callable]) -> Iterator[Any]:
        params = bind_args(args, self.registry)
        cursor = self.cursor()
        try:
            cursor.execute(sql, params)
        except Exception:
            cursor.close()
            raise
        yield from iter_rows(cursor, converter(column_names(cursor)))

    def query(self, cls: type, sql: str, args: Any = None) -> Iterator[Any]:
        """Stream records of type ``cls`` from a SELECT.

        The statement runs when iteration starts; the cursor closes when
        the iterator is exhausted or closed.
        """
        meta = self.registry.get(cls)
        return self._select(sql, args, lambda columns: RecordBuilder(meta, columns))

    def query_assoc(self, sql: str, args: Any = None) -> Iterator[dict[str, Any]]:
        """Stream rows as dicts keyed by column name."""
        return self._select(sql, args, to_dict)

    def query_array(self, sql: str, args: Any = None) -> Iterator[list[Any]]:
        """Stream rows as positional lists."""
        return self._select(sql, args, lambda columns: to_array)

    def scalar(self, sql: str, args: Any = None) -> Any:
        """First column of the first row, or None when there are no rows.
        """
        with self.cursor() as cursor:
            cursor.execute(sql, bind_args(args, self.registry))
            row = cursor.fetchone()
        if row is None:
            return None
        return to_array(row[:1])[0]


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Configure a SQLAlchemy connection with dialect-specific settings.
    """
    strategy = get_db_strategy(sa_connection)
    strategy.configure_connection(sa_connection.connection.driver_connection)
    logger.debug(f'Configured {get_dialect_name(sa_connection)} connection')


def connect(options: DatabaseOptions | dict[str, Any] | None = None,
            registry: TypeRegistry | None = None, **kw: Any) -> ConnectionWrapper:
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: DatabaseOptions object, dictionary of options, or None to
                 read ``RECORDMAP_*`` environment variables
        registry: Type metadata registry, defaults to the process-wide one
        **kw: Additional keyword arguments to override options

    Connection pooling options:
        use_pool: Whether to use connection pooling (default: False)
        pool_max_connections: Maximum connections in pool (default: 5)
        pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
        pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Returns
        ConnectionWrapper object for connecting to the database
    """
    options = DatabaseOptions.load(options, **kw)
    engine = get_engine_for_options(options)

    sa_connection = engine.connect()
    configure_connection(sa_connection)

    return ConnectionWrapper(sa_connection, options, registry)
