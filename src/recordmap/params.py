"""
Parameter binding for synthesized and caller-written statements.

Values are read from records by field name (attribute access, or key
lookup for mapping records) and normalized before they reach the driver:

- ``None`` and float NaN bind as SQL NULL
- enum members bind as their name when the field is a string enum,
  otherwise as their value

Batch binding suffixes every name with the row index, the same rule the
statement synthesizer uses for placeholders.
"""
import enum
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from recordmap.metadata import FieldDescriptor, TypeRegistry, default_registry
from recordmap.sql import param_name

__all__ = ['normalize', 'read_value', 'bind', 'bind_many', 'bind_args', 'bind_keys']


def normalize(value: Any, string_enum: bool = False) -> Any:
    """Convert a Python value to the value handed to the driver.

    >>> normalize(float('nan')) is None
    True
    """
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, enum.Enum):
        return value.name if string_enum else value.value
    return value


def read_value(record: Any, name: str) -> Any:
    """Read a field from an attribute-style or mapping record."""
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name)


def bind(fields: Iterable[FieldDescriptor], record: Any, index: int | None = None) -> dict[str, Any]:
    """Bind one record's fields to parameter names.
    """
    return {
        param_name(f.name, index): normalize(read_value(record, f.name), f.is_string_enum)
        for f in fields
    }


def bind_many(fields: Sequence[FieldDescriptor], records: Iterable[Any]) -> dict[str, Any]:
    """Bind a batch into a single mapping, suffixing names with the row index.
    """
    params: dict[str, Any] = {}
    for i, record in enumerate(records):
        params.update(bind(fields, record, i))
    return params


def bind_keys(keys: Sequence[FieldDescriptor], ids: Sequence[Any]) -> dict[str, Any]:
    """Bind positional key values to the key fields' parameter names."""
    return {k.name: normalize(v, k.is_string_enum) for k, v in zip(keys, ids)}


def bind_args(args: Any, registry: TypeRegistry | None = None) -> dict[str, Any]:
    """Normalize caller-supplied arguments for hand-written SQL.

    ``None`` binds nothing, a mapping is copied with its values
    normalized, and any other object is bound through its readable fields.
    """
    if args is None:
        return {}
    if isinstance(args, Mapping):
        return {k: normalize(v) for k, v in args.items()}
    if registry is None:
        registry = default_registry()
    meta = registry.get(args)
    return bind(meta.arguments, args)
