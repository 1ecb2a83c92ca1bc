"""
Per-type mapping metadata and the process-wide registry that caches it.

A :class:`TypeMetadata` is derived once per record type by reflecting over
its dataclass fields and properties. The :class:`TypeRegistry` hands out
the same instance for the lifetime of the process; entries are never
evicted because types do not change after import.
"""
import dataclasses
import enum
import logging
import threading
import types
import typing
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from recordmap import fields as markers
from recordmap.naming import to_column_name

__all__ = [
    'FieldDescriptor',
    'TypeMetadata',
    'TypeRegistry',
    'default_registry',
    'describe',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """Mapping facts for a single field of a record type."""
    name: str
    column: str
    is_key: bool = False
    is_generated: bool = False
    is_writable: bool = True
    is_readable: bool = True
    is_string_enum: bool = False
    type: Any = None

    def __post_init__(self):
        if self.is_generated and self.is_writable:
            object.__setattr__(self, 'is_writable', False)

    @property
    def enum_type(self) -> 'type[enum.Enum] | None':
        """Enum class held by this field, if any."""
        if isinstance(self.type, type) and issubclass(self.type, enum.Enum):
            return self.type
        return None


@dataclass(frozen=True)
class TypeMetadata:
    """Table name and ordered field descriptors of a record type.
    """
    type: type
    table: str
    fields: tuple[FieldDescriptor, ...]

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self.fields)

    @cached_property
    def keys(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.is_key)

    @cached_property
    def non_keys(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if not f.is_key)

    @cached_property
    def writable(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.is_writable)

    @cached_property
    def generated(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.is_generated)

    @cached_property
    def readable(self) -> tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.is_readable)

    @property
    def arguments(self) -> tuple[FieldDescriptor, ...]:
        """Fields bound when the record itself supplies query parameters."""
        return self.readable

    @cached_property
    def _lookup(self) -> dict[str, FieldDescriptor]:
        lookup = {f.name: f for f in self.fields}
        lookup.update({f.column: f for f in self.fields})
        return lookup

    def field_for(self, name: str) -> FieldDescriptor | None:
        """Resolve a descriptor by column name or field name.
        """
        found = self._lookup.get(name)
        if found is None:
            found = self._lookup.get(to_column_name(name))
        return found

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any], table: str = '') -> 'TypeMetadata':
        """Build uncached metadata for a dictionary row.

        Keys are taken as field names in insertion order; nothing is a key or
        generated.
        """
        return cls(
            type=type(row),
            table=table,
            fields=tuple(FieldDescriptor(name=k, column=to_column_name(k)) for k in row),
        )


def _unwrap_optional(tp: Any) -> Any:
    """Return ``X`` for ``X | None``, otherwise ``tp`` unchanged."""
    if typing.get_origin(tp) in {typing.Union, types.UnionType}:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def _type_hints(obj: Any) -> dict[str, Any]:
    try:
        return typing.get_type_hints(obj)
    except (NameError, TypeError) as e:
        logger.debug(f'Could not resolve annotations of {obj.__qualname__}: {e}')
        return {}


def _describe_field(f: dataclasses.Field, hints: dict[str, Any]) -> FieldDescriptor:
    meta = f.metadata
    tp = hints.get(f.name, f.type if not isinstance(f.type, str) else None)
    generated = bool(meta.get(markers.GENERATED, False))
    return FieldDescriptor(
        name=f.name,
        column=meta.get(markers.COLUMN) or to_column_name(f.name),
        is_key=bool(meta.get(markers.KEY, False)),
        is_generated=generated,
        is_writable=not generated,
        is_readable=True,
        is_string_enum=bool(meta.get(markers.STRING_ENUM, False)),
        type=_unwrap_optional(tp),
    )


def _describe_property(name: str, prop: property) -> FieldDescriptor:
    hints = _type_hints(prop.fget) if prop.fget is not None else {}
    return FieldDescriptor(
        name=name,
        column=to_column_name(name),
        is_writable=prop.fset is not None,
        is_readable=prop.fget is not None,
        type=_unwrap_optional(hints.get('return')),
    )


def describe(cls: type) -> TypeMetadata:
    """Reflect over ``cls`` and build its metadata.

    Dataclass fields come first in declaration order, followed by
    properties in class body order. Plain annotated classes are described
    from their annotations.
    """
    hints = _type_hints(cls)
    descriptors: list[FieldDescriptor] = []

    if dataclasses.is_dataclass(cls):
        descriptors.extend(_describe_field(f, hints) for f in dataclasses.fields(cls))
    else:
        for name, tp in hints.items():
            if name.startswith('_') or typing.get_origin(tp) is typing.ClassVar:
                continue
            descriptors.append(FieldDescriptor(name=name, column=to_column_name(name),
                                               type=_unwrap_optional(tp)))

    seen = {d.name for d in descriptors}
    for klass in reversed(cls.__mro__):
        for name, attr in vars(klass).items():
            if isinstance(attr, property) and name not in seen and not name.startswith('_'):
                descriptors.append(_describe_property(name, attr))
                seen.add(name)

    table = getattr(cls, markers.TABLE_ATTRIBUTE, None) or to_column_name(cls.__name__)
    logger.debug(f'Described {cls.__name__} as table {table} with {len(descriptors)} fields')
    return TypeMetadata(type=cls, table=table, fields=tuple(descriptors))


class TypeRegistry:
    """Process-wide cache of type metadata.

    Entries are computed on first access and never invalidated. Concurrent
    first access may compute the metadata more than once, but only the first
    published instance is ever returned.
    """

    def __init__(self) -> None:
        self._types: dict[type, TypeMetadata] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, cls: type) -> bool:
        return cls in self._types

    def get(self, obj: Any) -> TypeMetadata:
        """Return metadata for a type, or for the runtime type of an instance.
        """
        cls = obj if isinstance(obj, type) else type(obj)
        meta = self._types.get(cls)
        if meta is not None:
            return meta

        meta = describe(cls)
        with self._lock:
            return self._types.setdefault(cls, meta)

    def for_record(self, record: Any, table: str = '') -> TypeMetadata:
        """Metadata for a record; dictionaries are described from their keys.
        """
        if isinstance(record, Mapping):
            return TypeMetadata.from_mapping(record, table)
        return self.get(record)


_default_registry = TypeRegistry()


def default_registry() -> TypeRegistry:
    """Return the registry shared by connections that were not given one."""
    return _default_registry
