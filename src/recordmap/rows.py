"""
Result materialization.

A single-pass row iterator drives three targets: typed records, dicts
keyed by column name, and positional lists. Iterators own their cursor
and close it when exhausted, closed, or abandoned with an error; a
consumed iterator yields nothing more.
"""
import dataclasses
import datetime
import enum
import logging
import math
from collections.abc import AsyncIterator, Callable, Iterator, Sequence
from typing import Any

import dateutil.parser

from recordmap.metadata import FieldDescriptor, TypeMetadata

__all__ = [
    'column_names',
    'iter_rows',
    'aiter_rows',
    'RecordBuilder',
    'to_dict',
    'to_array',
    'convert_value',
]

logger = logging.getLogger(__name__)


def column_names(cursor: Any) -> list[str]:
    """Result column names in order, empty when the statement returned no rows."""
    if cursor.description is None:
        return []
    return [desc[0] for desc in cursor.description]


def iter_rows(cursor: Any, convert: Callable[[Sequence[Any]], Any] | None = None) -> Iterator[Any]:
    """Yield rows one at a time, passed through ``convert`` when given,
    and close the cursor afterwards.
    """
    try:
        while True:
            row = cursor.fetchone()
            if row is None:
                break
            yield row if convert is None else convert(row)
    finally:
        cursor.close()


async def aiter_rows(cursor: Any, convert: Callable[[Sequence[Any]], Any] | None = None) -> AsyncIterator[Any]:
    """Asyncio variant of :func:`iter_rows`.

    Cancellation raised while fetching propagates after the cursor closes.
    """
    try:
        while True:
            row = await cursor.fetchone()
            if row is None:
                break
            yield row if convert is None else convert(row)
    finally:
        await cursor.close()


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _to_enum(enum_type: type[enum.Enum], value: Any) -> enum.Enum:
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str) and value in enum_type.__members__:
        return enum_type[value]
    return enum_type(value)


def convert_value(desc: FieldDescriptor, value: Any) -> Any:
    """Convert a driver value to the Python type declared on ``desc``.

    Unknown or untyped fields receive the driver value unchanged.
    """
    if _is_null(value):
        return None

    enum_type = desc.enum_type
    if enum_type is not None:
        return _to_enum(enum_type, value)

    tp = desc.type
    if tp is datetime.datetime:
        if isinstance(value, str):
            return dateutil.parser.isoparse(value)
        if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
            return datetime.datetime.combine(value, datetime.time())
    elif tp is datetime.date:
        if isinstance(value, str):
            return dateutil.parser.isoparse(value).date()
        if isinstance(value, datetime.datetime):
            return value.date()
    elif tp is bool and isinstance(value, int):
        return bool(value)
    return value


class RecordBuilder:
    """Build instances of a mapped type from rows with fixed columns.

    Columns are matched to fields once, by column name or field name;
    columns without a settable field are ignored. Fields accepted by
    ``__init__`` are passed as keyword arguments, the others are assigned
    on the constructed instance.
    """

    def __init__(self, meta: TypeMetadata, columns: Sequence[str]) -> None:
        self.meta = meta
        cls = meta.type
        init_names = set()
        if dataclasses.is_dataclass(cls):
            init_names = {f.name for f in dataclasses.fields(cls) if f.init}

        self._init: list[tuple[int, FieldDescriptor]] = []
        self._assign: list[tuple[int, FieldDescriptor]] = []
        for i, column in enumerate(columns):
            desc = meta.field_for(column)
            if desc is None:
                continue
            if desc.name in init_names:
                self._init.append((i, desc))
            elif desc.is_writable or desc.is_generated:
                self._assign.append((i, desc))

        ignored = len(columns) - len(self._init) - len(self._assign)
        if ignored:
            logger.debug(f'Ignoring {ignored} result columns not settable on {cls.__name__}')

    def __call__(self, row: Sequence[Any]) -> Any:
        kwargs = {d.name: convert_value(d, row[i]) for i, d in self._init}
        record = self.meta.type(**kwargs)
        for i, d in self._assign:
            setattr(record, d.name, convert_value(d, row[i]))
        return record


def to_dict(columns: Sequence[str]) -> Callable[[Sequence[Any]], dict[str, Any]]:
    """Row converter producing dicts keyed by column name."""
    def convert(row: Sequence[Any]) -> dict[str, Any]:
        return {c: None if _is_null(v) else v for c, v in zip(columns, row)}
    return convert


def to_array(row: Sequence[Any]) -> list[Any]:
    """Row converter producing positional lists."""
    return [None if _is_null(v) else v for v in row]
