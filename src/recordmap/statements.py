"""
Statement synthesis from type metadata.

Every builder returns SQL text with pyformat placeholders; values never
appear in the text. Identifiers are quoted by the dialect strategy, and
placeholder names follow :func:`recordmap.sql.param_name` so that the
parameter binder produces matching keys.

Builders are memoized per (strategy, metadata, table, row count, conflict
columns). Callers are expected to pass validated table and column names.
"""
import logging
from collections.abc import Sequence

from recordmap.cache import cacheable_statement
from recordmap.exceptions import MissingKeyError, ValidationError
from recordmap.metadata import FieldDescriptor, TypeMetadata
from recordmap.sql import placeholder
from recordmap.strategy import DatabaseStrategy

__all__ = [
    'select_by_key',
    'insert',
    'insert_returning',
    'insert_if_missing',
    'upsert',
    'update',
    'update_by_key',
    'delete',
    'delete_by_key',
    'existing_keys',
    'key_predicate',
]

logger = logging.getLogger(__name__)


def _require_keys(meta: TypeMetadata, operation: str) -> tuple[FieldDescriptor, ...]:
    if not meta.keys:
        raise MissingKeyError(meta.type, operation)
    return meta.keys


def _require_writable(meta: TypeMetadata, operation: str) -> tuple[FieldDescriptor, ...]:
    if not meta.writable:
        raise ValidationError(f'No writable fields to {operation} on {meta.type.__name__}')
    return meta.writable


def _resolve(meta: TypeMetadata, columns: Sequence[str]) -> tuple[FieldDescriptor, ...]:
    """Map column names to descriptors, failing on names the record lacks."""
    found = []
    for column in columns:
        desc = meta.field_for(column)
        if desc is None:
            raise ValidationError(f'Column {column} is not a field of {meta.type.__name__}')
        found.append(desc)
    return tuple(found)


def key_predicate(strategy: DatabaseStrategy, fields: Sequence[FieldDescriptor],
                  index: int | None = None) -> str:
    """Equality predicate over ``fields`` joined with AND.

    >>> from recordmap.strategy import get_strategy
    >>> key_predicate(get_strategy('postgresql'), [FieldDescriptor('id', 'id')])
    '"id" = %(id)s'
    """
    q = strategy.quote_identifier
    return ' AND '.join(f'{q(f.column)} = {placeholder(f.name, index)}' for f in fields)


def _column_list(strategy: DatabaseStrategy, fields: Sequence[FieldDescriptor]) -> str:
    return ', '.join(strategy.quote_identifier(f.column) for f in fields)


def _values(fields: Sequence[FieldDescriptor], count: int) -> str:
    rows = []
    for i in range(count):
        rows.append('(' + ', '.join(placeholder(f.name, i) for f in fields) + ')')
    return ', '.join(rows)


def _insert_prefix(strategy: DatabaseStrategy, meta: TypeMetadata, table: str,
                   count: int, operation: str) -> str:
    if count < 1:
        raise ValidationError(f'Cannot {operation} zero rows')
    writable = _require_writable(meta, operation)
    return (f'INSERT INTO {strategy.quote_identifier(table)} '
            f'({_column_list(strategy, writable)}) VALUES {_values(writable, count)}')


@cacheable_statement('select_by_key')
def select_by_key(strategy: DatabaseStrategy, meta: TypeMetadata, table: str) -> str:
    """Fetch a single row by its key fields.

    Parameters are the unsuffixed key field names.
    """
    keys = _require_keys(meta, 'get')
    return f'SELECT * FROM {strategy.quote_identifier(table)} WHERE {key_predicate(strategy, keys)}'


@cacheable_statement('insert')
def insert(strategy: DatabaseStrategy, meta: TypeMetadata, table: str, count: int) -> str:
    """Multi-row INSERT over the writable fields.

    Each row's placeholders carry its zero-based index within the statement.
    """
    return _insert_prefix(strategy, meta, table, count, 'insert')


@cacheable_statement('insert_returning')
def insert_returning(strategy: DatabaseStrategy, meta: TypeMetadata, table: str,
                     returning: tuple[str, ...]) -> str:
    """Single-row INSERT returning ``returning`` columns.

    Placeholders are unsuffixed. A record without writable fields inserts
    ``DEFAULT VALUES``.
    """
    q = strategy.quote_identifier
    if meta.writable:
        values = ', '.join(placeholder(f.name) for f in meta.writable)
        body = f'({_column_list(strategy, meta.writable)}) VALUES ({values})'
    else:
        body = 'DEFAULT VALUES'
    suffix = f" RETURNING {', '.join(q(c) for c in returning)}" if returning else ''
    return f'INSERT INTO {q(table)} {body}{suffix}'


def _conflict_target(strategy: DatabaseStrategy, conflict: tuple[str, ...]) -> str:
    if not conflict:
        raise ValidationError('At least one conflict column is required')
    return ', '.join(strategy.quote_identifier(c) for c in conflict)


@cacheable_statement('insert_if_missing')
def insert_if_missing(strategy: DatabaseStrategy, meta: TypeMetadata, table: str,
                      count: int, conflict: tuple[str, ...]) -> str:
    """INSERT that silently skips rows colliding on ``conflict``.
    """
    prefix = _insert_prefix(strategy, meta, table, count, 'insert')
    return f'{prefix} ON CONFLICT ({_conflict_target(strategy, conflict)}) DO NOTHING'


@cacheable_statement('upsert')
def upsert(strategy: DatabaseStrategy, meta: TypeMetadata, table: str,
           count: int, conflict: tuple[str, ...]) -> str:
    """INSERT ... ON CONFLICT DO UPDATE.

    Writable columns outside the conflict target are overwritten from
    ``excluded``. When no such column exists the conflict columns are
    assigned to themselves so that colliding rows are still touched and
    reported. The dialect's outcome clause, if any, is appended.
    """
    q = strategy.quote_identifier
    prefix = _insert_prefix(strategy, meta, table, count, 'upsert')
    target = _conflict_target(strategy, conflict)

    conflicting = set(conflict)
    updated = [f.column for f in meta.writable if f.column not in conflicting] or list(conflict)
    assignments = ', '.join(f'{q(c)} = excluded.{q(c)}' for c in updated)

    sql = f'{prefix} ON CONFLICT ({target}) DO UPDATE SET {assignments}'
    if strategy.upsert_outcome_clause:
        sql = f'{sql} {strategy.upsert_outcome_clause}'
    return sql


@cacheable_statement('existing_keys')
def existing_keys(strategy: DatabaseStrategy, meta: TypeMetadata, table: str,
                  count: int, conflict: tuple[str, ...]) -> str:
    """Select the conflict columns of rows that a batch would collide with.

    Reuses the parameter names of the batch INSERT, so the same bound
    mapping serves both statements.
    """
    q = strategy.quote_identifier
    fields = _resolve(meta, conflict)
    columns = ', '.join(q(c) for c in conflict)
    if len(fields) == 1:
        values = ', '.join(placeholder(fields[0].name, i) for i in range(count))
        predicate = f'{columns} IN ({values})'
    else:
        predicate = f'({columns}) IN (VALUES {_values(fields, count)})'
    return f'SELECT {columns} FROM {q(table)} WHERE {predicate}'


@cacheable_statement('update')
def update(strategy: DatabaseStrategy, meta: TypeMetadata, table: str, where: str) -> str:
    """UPDATE of every writable field, filtered by caller-written ``where``.
    """
    q = strategy.quote_identifier
    writable = _require_writable(meta, 'update')
    assignments = ', '.join(f'{q(f.column)} = {placeholder(f.name)}' for f in writable)
    return f'UPDATE {q(table)} SET {assignments} WHERE {where}'


def update_by_key(strategy: DatabaseStrategy, meta: TypeMetadata, table: str) -> str:
    """UPDATE of a record identified by its key fields."""
    keys = _require_keys(meta, 'update')
    return update(strategy, meta, table, key_predicate(strategy, keys))


@cacheable_statement('delete')
def delete(strategy: DatabaseStrategy, table: str, where: str) -> str:
    """DELETE filtered by caller-written ``where``."""
    return f'DELETE FROM {strategy.quote_identifier(table)} WHERE {where}'


def delete_by_key(strategy: DatabaseStrategy, meta: TypeMetadata, table: str) -> str:
    keys = _require_keys(meta, 'delete')
    return delete(strategy, table, key_predicate(strategy, keys))
