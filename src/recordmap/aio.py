"""
Asyncio connection handling.

`AsyncConnectionWrapper` mirrors :class:`recordmap.connection.ConnectionWrapper`
with coroutines and async iterators; planning, binding and materialization
are shared and never await. Only driver I/O suspends: cursor creation,
execute, fetch and commit.

Cancellation surfaces as ``asyncio.CancelledError`` from whichever driver
call was pending. The cursor in use is closed before the error propagates
and partial results are discarded.
"""
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import nullcontext
from typing import Any, Self

from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine
from sqlalchemy.pool import NullPool

from recordmap import orm
from recordmap.connection import get_engine_for_options
from recordmap.cursor import AsyncCursor
from recordmap.metadata import TypeRegistry, default_registry
from recordmap.options import DatabaseOptions
from recordmap.params import bind_args
from recordmap.rows import RecordBuilder, aiter_rows, column_names, convert_value
from recordmap.rows import to_array, to_dict
from recordmap.sql import BoundStatement
from recordmap.strategy import DatabaseStrategy, get_db_strategy
from recordmap.transaction import AsyncTransaction

__all__ = ['AsyncConnectionWrapper', 'connect_async']

logger = logging.getLogger(__name__)


class AsyncConnectionWrapper:
    """Wraps a SQLAlchemy ``AsyncConnection`` and runs record operations on it.
    """

    def __init__(self, sa_connection: AsyncConnection, driver_connection: Any,
                 options: DatabaseOptions | None = None,
                 registry: TypeRegistry | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dbapi_connection = driver_connection
        self.registry = registry if registry is not None else default_registry()
        self.strategy: DatabaseStrategy = get_db_strategy(sa_connection)
        self.calls = 0
        self.time = 0.0
        self.in_transaction = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None,
                        exc_tb: Any | None) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f'{type(self).__name__}(dialect={self.dialect!r}, calls={self.calls})'

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    @property
    def is_pooled(self) -> bool:
        return not isinstance(self.engine.pool, NullPool)

    @property
    def closed(self) -> bool:
        return self.sa_connection.closed

    def addcall(self, elapsed: float) -> None:
        self.time += elapsed
        self.calls += 1

    async def cursor(self) -> AsyncCursor:
        """Get a wrapped cursor for this connection
        """
        raw_cursor = await self.strategy.create_async_cursor(self.dbapi_connection)
        return AsyncCursor(raw_cursor, self, self.strategy)

    async def commit(self) -> None:
        await self.dbapi_connection.commit()

    async def rollback(self) -> None:
        await self.dbapi_connection.rollback()

    def transaction(self) -> AsyncTransaction:
        """Start a transaction spanning several operations.

        Examples
            async with cn.transaction() as tx:
                await tx.insert(person)
        """
        return AsyncTransaction(self)

    async def close(self) -> None:
        if self.sa_connection.closed:
            return
        await self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per query)')

    def _atomic(self, needed: bool = True):
        if self.in_transaction or not needed:
            return nullcontext()
        return self.transaction()

    async def _write(self, statement: BoundStatement) -> int:
        async with await self.cursor() as cursor:
            rowcount = await cursor.execute(statement.sql, statement.params)
        if not self.in_transaction:
            await self.commit()
        return rowcount

    async def _fetch(self, statement: BoundStatement) -> list[tuple]:
        async with await self.cursor() as cursor:
            await cursor.execute(statement.sql, statement.params)
            rows = await cursor.fetchall()
        if not self.in_transaction:
            await self.commit()
        return rows

    async def _run_batch(self, plan: 'orm.BatchPlan | None') -> int:
        if plan is None:
            logger.debug('Skipping insert of empty rows')
            return 0
        total = 0
        async with self._atomic(plan.needs_transaction):
            for step in plan.steps:
                total += await self._write(step.statement)
        return total

    async def _run_upsert(self, plan: 'orm.BatchPlan | None') -> list[bool]:
        if plan is None:
            logger.debug('Skipping upsert of empty rows')
            return []
        outcomes: list[bool] = []
        async with self._atomic(plan.needs_transaction):
            for step in plan.steps:
                async with await self.cursor() as cursor:
                    existing = []
                    if step.precheck:
                        await cursor.execute(step.precheck, step.statement.params)
                        existing = await cursor.fetchall()
                    await cursor.execute(step.statement.sql, step.statement.params)
                    if self.strategy.reports_upsert_outcome:
                        outcomes.extend(bool(row[0]) for row in await cursor.fetchall())
                    elif plan.conflict:
                        outcomes.extend(orm.upsert_outcomes(plan, step, existing))
                    else:
                        outcomes.extend([True] * step.count)
        if not self.in_transaction:
            await self.commit()
        return outcomes

    # record operations

    async def get(self, cls: type, *ids: Any) -> Any | None:
        """Fetch the record of type ``cls`` whose key fields equal ``ids``.
        """
        meta = self.registry.get(cls)
        statement = orm.plan_get(self.strategy, meta, ids)
        async with await self.cursor() as cursor:
            await cursor.execute(statement.sql, statement.params)
            row = await cursor.fetchone()
            if row is None:
                return None
            return RecordBuilder(meta, column_names(cursor))(row)

    async def insert(self, record: Any) -> int:
        """Insert a record and read its generated fields back into it.
        """
        meta = orm.record_meta(self.registry, record, 'insert')
        if not meta.generated:
            return await self.insert_many([record])

        returning = [g.column for g in meta.generated]
        statement = orm.plan_insert_returning(self.strategy, meta, record, meta.table, returning)
        rows = await self._fetch(statement)
        for desc, value in zip(meta.generated, rows[0]):
            setattr(record, desc.name, convert_value(desc, value))
        return 1

    async def insert_many(self, records: Iterable[Any], batch_size: int | None = None) -> int:
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT, records,
                              batch_size=batch_size)
        return await self._run_batch(plan)

    async def insert_if_missing(self, record: Any) -> int:
        return await self.insert_many_if_missing([record])

    async def insert_many_if_missing(self, records: Iterable[Any], batch_size: int | None = None) -> int:
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT_IF_MISSING, records,
                              batch_size=batch_size)
        return await self._run_batch(plan)

    async def upsert(self, record: Any) -> bool:
        return (await self.upsert_many([record]))[0]

    async def upsert_many(self, records: Iterable[Any], batch_size: int | None = None) -> list[bool]:
        """Insert or update records by their keys; one inserted flag per record.
        """
        plan = orm.plan_batch(self.strategy, self.registry, orm.UPSERT, records,
                              batch_size=batch_size)
        return await self._run_upsert(plan)

    async def update(self, record: Any) -> int:
        return await self._write(orm.plan_update_by_key(self.strategy, self.registry, record))

    async def delete(self, record: Any) -> int:
        return await self._write(orm.plan_delete_by_key(self.strategy, self.registry, record))

    # table operations

    async def insert_row(self, table: str, record: Any) -> int:
        return await self.insert_rows(table, [record])

    async def insert_rows(self, table: str, records: Iterable[Any], batch_size: int | None = None) -> int:
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT, records,
                              table=table, batch_size=batch_size)
        return await self._run_batch(plan)

    async def insert_row_returning(self, table: str, record: Any, returning: str | Sequence[str]) -> Any:
        statement = orm.plan_row_returning(self.strategy, self.registry, table, record, returning)
        row = (await self._fetch(statement))[0]
        if isinstance(returning, str) and ',' not in returning:
            return row[0]
        return tuple(row)

    async def insert_row_if_missing(self, table: str, record: Any, conflict: str | Sequence[str]) -> int:
        return await self.insert_rows_if_missing(table, [record], conflict)

    async def insert_rows_if_missing(self, table: str, records: Iterable[Any],
                                     conflict: str | Sequence[str], batch_size: int | None = None) -> int:
        plan = orm.plan_batch(self.strategy, self.registry, orm.INSERT_IF_MISSING, records,
                              table=table, conflict=conflict, batch_size=batch_size)
        return await self._run_batch(plan)

    async def upsert_row(self, table: str, record: Any, conflict: str | Sequence[str]) -> bool:
        return (await self.upsert_rows(table, [record], conflict))[0]

    async def upsert_rows(self, table: str, records: Iterable[Any],
                          conflict: str | Sequence[str], batch_size: int | None = None) -> list[bool]:
        plan = orm.plan_batch(self.strategy, self.registry, orm.UPSERT, records,
                              table=table, conflict=conflict, batch_size=batch_size)
        return await self._run_upsert(plan)

    async def update_rows(self, table: str, record: Any, where: str, args: Any = None) -> int:
        return await self._write(orm.plan_update(self.strategy, self.registry, table, record, where, args))

    async def delete_rows(self, table: str, where: str, args: Any = None) -> int:
        return await self._write(orm.plan_delete(self.strategy, self.registry, table, where, args))

    # raw SQL

    async def execute(self, sql: str, args: Any = None) -> int:
        return await self._write(BoundStatement(sql, bind_args(args, self.registry)))

    async def _select(self, sql: str, args: Any,
                      converter: Callable[[list[str]], Callable]) -> AsyncIterator[Any]:
        params = bind_args(args, self.registry)
        cursor = await self.cursor()
        try:
            await cursor.execute(sql, params)
        except BaseException:
            await cursor.close()
            raise
        async for item in aiter_rows(cursor, converter(column_names(cursor))):
            yield item

    def query(self, cls: type, sql: str, args: Any = None) -> AsyncIterator[Any]:
        """Stream records of type ``cls`` from a SELECT.

        Usage:
            async for person in cn.query(Person, 'select * from person'):
                ...
        """
        meta = self.registry.get(cls)
        return self._select(sql, args, lambda columns: RecordBuilder(meta, columns))

    def query_assoc(self, sql: str, args: Any = None) -> AsyncIterator[dict[str, Any]]:
        return self._select(sql, args, to_dict)

    def query_array(self, sql: str, args: Any = None) -> AsyncIterator[list[Any]]:
        return self._select(sql, args, lambda columns: to_array)

    async def scalar(self, sql: str, args: Any = None) -> Any:
        async with await self.cursor() as cursor:
            await cursor.execute(sql, bind_args(args, self.registry))
            row = await cursor.fetchone()
        if row is None:
            return None
        return to_array(row[:1])[0]


async def connect_async(options: DatabaseOptions | dict[str, Any] | None = None,
                        registry: TypeRegistry | None = None, **kw: Any) -> AsyncConnectionWrapper:
    """Asyncio counterpart of :func:`recordmap.connect`.

    PostgreSQL runs on psycopg's async driver, SQLite on aiosqlite.
    """
    options = DatabaseOptions.load(options, **kw)
    engine = get_engine_for_options(options, engine_factory=create_async_engine, asyncio=True)

    sa_connection = await engine.connect()
    try:
        raw = await sa_connection.get_raw_connection()
        strategy = get_db_strategy(sa_connection)
        await strategy.configure_async_connection(raw.driver_connection)
    except BaseException:
        await sa_connection.close()
        raise

    return AsyncConnectionWrapper(sa_connection, raw.driver_connection, options, registry)
