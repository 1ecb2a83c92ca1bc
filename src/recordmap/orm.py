"""
Planning for record-level operations.

Everything the sync and async connection wrappers share lives here:
argument validation, metadata lookup, chunking of large batches and the
statements (with bound parameters) each operation runs. Planning never
touches a connection, so invalid input fails before any cursor exists.
"""
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from more_itertools import chunked

from recordmap import statements
from recordmap.exceptions import KeyArityMismatchError, MissingKeyError
from recordmap.exceptions import ValidationError
from recordmap.metadata import FieldDescriptor, TypeMetadata, TypeRegistry
from recordmap.params import bind, bind_args, bind_keys, bind_many
from recordmap.sql import BoundStatement, param_name, split_columns
from recordmap.sql import validate_identifier
from recordmap.strategy import DatabaseStrategy

__all__ = [
    'BatchStep',
    'BatchPlan',
    'rows_per_statement',
    'record_meta',
    'plan_get',
    'plan_batch',
    'plan_insert_returning',
    'plan_row_returning',
    'plan_update',
    'plan_update_by_key',
    'plan_delete',
    'plan_delete_by_key',
    'upsert_outcomes',
]

logger = logging.getLogger(__name__)

INSERT = 'insert'
INSERT_IF_MISSING = 'insert_if_missing'
UPSERT = 'upsert'


@dataclass
class BatchStep:
    """One statement of a batch, covering ``count`` consecutive records.
    """
    statement: BoundStatement
    count: int
    precheck: str | None = None


@dataclass
class BatchPlan:
    """Statements for a batch operation, run in order inside one transaction
    when there is more than one.
    """
    kind: str
    meta: TypeMetadata
    conflict: tuple[FieldDescriptor, ...] = ()
    steps: list[BatchStep] = field(default_factory=list)

    @property
    def needs_transaction(self) -> bool:
        return len(self.steps) > 1 or any(s.precheck for s in self.steps)


def rows_per_statement(strategy: DatabaseStrategy, meta: TypeMetadata,
                       batch_size: int | None = None) -> int:
    """Largest row count per statement that stays within the dialect's
    bind-parameter limit and the caller's ``batch_size``.
    """
    width = max(1, len(meta.writable))
    limit = max(1, strategy.max_parameters // width)
    if batch_size is not None:
        if batch_size < 1:
            raise ValidationError(f'batch_size must be positive, got {batch_size}')
        limit = min(limit, batch_size)
    return limit


def _records_meta(registry: TypeRegistry, records: Sequence[Any], table: str = '') -> TypeMetadata:
    """Metadata from the first record; every record must share its shape."""
    first = records[0]
    meta = registry.for_record(first, table)
    if isinstance(first, Mapping):
        names = tuple(first)
        for record in records:
            if not isinstance(record, Mapping) or tuple(record) != names:
                raise ValidationError('All rows of a batch must have the same keys in the same order')
    else:
        for record in records:
            if type(record) is not meta.type:
                raise ValidationError(
                    f'All records of a batch must be {meta.type.__name__}, got {type(record).__name__}')
    return meta


def _conflict(meta: TypeMetadata, conflict: str | Iterable[str] | None,
              operation: str) -> tuple[str, ...]:
    if conflict is None:
        if not meta.keys:
            raise MissingKeyError(meta.type, operation)
        return tuple(k.column for k in meta.keys)
    return split_columns(conflict)


def record_meta(registry: TypeRegistry, record: Any, operation: str) -> TypeMetadata:
    """Metadata of a mapped record; dictionaries only work with table-level operations."""
    if isinstance(record, Mapping):
        raise ValidationError(f'Cannot {operation} a dictionary row without a table name')
    return registry.get(record)


def plan_get(strategy: DatabaseStrategy, meta: TypeMetadata, ids: Sequence[Any]) -> BoundStatement:
    """SELECT by key, after checking the key count against ``ids``.
    """
    if not meta.keys:
        raise MissingKeyError(meta.type, 'get')
    if len(ids) != len(meta.keys):
        raise KeyArityMismatchError(meta.type, len(meta.keys), len(ids))
    sql = statements.select_by_key(strategy, meta, meta.table)
    return BoundStatement(sql, bind_keys(meta.keys, ids))


def plan_batch(strategy: DatabaseStrategy, registry: TypeRegistry, kind: str,
               records: Sequence[Any], table: str | None = None,
               conflict: str | Iterable[str] | None = None,
               batch_size: int | None = None) -> BatchPlan | None:
    """Plan an INSERT, INSERT-if-missing or upsert over ``records``.

    ``table`` defaults to the mapped table of the record type; ``conflict``
    defaults to its key columns. Returns None for an empty batch.
    """
    records = list(records)
    if not records:
        return None

    if table is not None:
        table = validate_identifier(table)
    meta = _records_meta(registry, records, table or '')
    table = table or meta.table
    if not table:
        raise ValidationError('A table name is required for dictionary rows')

    target: tuple[str, ...] = ()
    if kind != INSERT:
        target = _conflict(meta, conflict, kind.replace('_', ' '))

    plan = BatchPlan(kind=kind, meta=meta)
    if kind == UPSERT and not strategy.reports_upsert_outcome:
        conflict_fields = tuple(meta.field_for(c) for c in target)
        writable = set(meta.writable)
        if all(f is not None and f in writable for f in conflict_fields):
            plan.conflict = conflict_fields
        else:
            logger.debug(f'Conflict columns {target} are not inserted; every row reports as inserted')

    size = rows_per_statement(strategy, meta, batch_size)
    for chunk in chunked(records, size):
        n = len(chunk)
        if kind == INSERT:
            sql = statements.insert(strategy, meta, table, n)
        elif kind == INSERT_IF_MISSING:
            sql = statements.insert_if_missing(strategy, meta, table, n, target)
        else:
            sql = statements.upsert(strategy, meta, table, n, target)
        precheck = None
        if plan.conflict:
            precheck = statements.existing_keys(strategy, meta, table, n,
                                                tuple(f.column for f in plan.conflict))
        plan.steps.append(BatchStep(BoundStatement(sql, bind_many(meta.writable, chunk)), n, precheck))

    if len(plan.steps) > 1:
        logger.debug(f'Split {len(records)} rows into {len(plan.steps)} statements of at most {size}')
    return plan


def upsert_outcomes(plan: BatchPlan, step: BatchStep, existing: Iterable[Sequence[Any]]) -> list[bool]:
    """Per-row inserted flags for a chunk, given the conflict keys that
    existed before it ran. A key repeated within the chunk is an update
    after its first occurrence.
    """
    seen = {tuple(row) for row in existing}
    outcomes = []
    for i in range(step.count):
        key = tuple(step.statement.params[param_name(f.name, i)] for f in plan.conflict)
        outcomes.append(key not in seen)
        seen.add(key)
    return outcomes


def plan_insert_returning(strategy: DatabaseStrategy, meta: TypeMetadata, record: Any,
                          table: str, returning: Sequence[str]) -> BoundStatement:
    """Single-row INSERT returning ``returning`` columns."""
    sql = statements.insert_returning(strategy, meta, table, tuple(returning))
    return BoundStatement(sql, bind(meta.writable, record))


def _merge(params: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
    # explicit arguments win over same-named record values
    return {**params, **args}


def plan_update_by_key(strategy: DatabaseStrategy, registry: TypeRegistry, record: Any) -> BoundStatement:
    """UPDATE of a record identified by its keys."""
    meta = record_meta(registry, record, 'update')
    sql = statements.update_by_key(strategy, meta, meta.table)
    fields = dict.fromkeys(meta.writable + meta.keys)
    return BoundStatement(sql, bind(fields, record))


def plan_update(strategy: DatabaseStrategy, registry: TypeRegistry, table: str,
                record: Any, where: str, args: Any = None) -> BoundStatement:
    """UPDATE of ``table`` from the writable fields of ``record`` filtered by ``where``.

    Every readable field of ``record`` is bound, so ``where`` may name the
    record's own keys or generated fields. Values in ``args`` replace
    same-named record values.
    """
    table = validate_identifier(table)
    meta = registry.for_record(record, table)
    sql = statements.update(strategy, meta, table, where)
    return BoundStatement(sql, _merge(bind(meta.arguments, record), bind_args(args, registry)))


def plan_delete_by_key(strategy: DatabaseStrategy, registry: TypeRegistry, record: Any) -> BoundStatement:
    meta = record_meta(registry, record, 'delete')
    sql = statements.delete_by_key(strategy, meta, meta.table)
    return BoundStatement(sql, bind(meta.keys, record))


def plan_delete(strategy: DatabaseStrategy, registry: TypeRegistry, table: str,
                where: str, args: Any = None) -> BoundStatement:
    table = validate_identifier(table)
    return BoundStatement(statements.delete(strategy, table, where), bind_args(args, registry))


def plan_row_returning(strategy: DatabaseStrategy, registry: TypeRegistry, table: str,
                       record: Any, returning: str | Iterable[str]) -> BoundStatement:
    """Table-level single-row INSERT returning caller-named columns."""
    table = validate_identifier(table)
    meta = registry.for_record(record, table)
    return plan_insert_returning(strategy, meta, record, table, split_columns(returning))
