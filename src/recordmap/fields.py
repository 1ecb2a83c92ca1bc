"""
Declarative markers for mapped record types.

Records are plain dataclasses. Column roles are declared through the
metadata of :func:`field` and the table name through :func:`table`::

    @table('persons')
    @dataclass
    class Person:
        id: int | None = field(key=True, generated=True)
        first_name: str | None = None
        gender: Gender = field(default=Gender.Female, string_enum=True)
"""
import dataclasses
from typing import Any

__all__ = ['field', 'table', 'TABLE_ATTRIBUTE']

TABLE_ATTRIBUTE = '__recordmap_table__'

KEY = 'recordmap.key'
GENERATED = 'recordmap.generated'
COLUMN = 'recordmap.column'
STRING_ENUM = 'recordmap.string_enum'


def field(*, key: bool = False, generated: bool = False, column: str | None = None,
          string_enum: bool = False, **kwargs: Any) -> Any:
    """Declare a dataclass field with column markers.

    Args:
        key: Field identifies a unique row
        generated: Value is produced by the backend and read back after insert
        column: Explicit column name, bypassing the naming convention
        string_enum: Store enum members by name instead of by value
        **kwargs: Passed through to ``dataclasses.field``

    Generated fields default to ``None`` and are left out of ``__init__``
    unless ``init`` or a default is given explicitly.
    """
    metadata = dict(kwargs.pop('metadata', None) or {})
    metadata[KEY] = key
    metadata[GENERATED] = generated
    metadata[COLUMN] = column
    metadata[STRING_ENUM] = string_enum

    if generated and 'default' not in kwargs and 'default_factory' not in kwargs:
        kwargs['default'] = None
        kwargs.setdefault('init', False)

    return dataclasses.field(metadata=metadata, **kwargs)


def table(name: str):
    """Class decorator declaring an explicit table name.

    Usage:
        @table('cars')
        @dataclass
        class Car:
            ...
    """
    def decorator(cls: type) -> type:
        setattr(cls, TABLE_ATTRIBUTE, name)
        return cls
    return decorator
