"""
SQL text helpers: identifier validation and quoting, named placeholders,
and the bound statement passed from synthesis to execution.

Generated statements always use pyformat placeholders (``%(name)s``).
Dialects that expect another style convert them right before execution
with :func:`standardize_placeholders`; string literals are left alone.
"""
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from recordmap.exceptions import ValidationError

__all__ = [
    'BoundStatement',
    'quote_identifier',
    'validate_identifier',
    'split_columns',
    'param_name',
    'placeholder',
    'standardize_placeholders',
]

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')

# String literals, escaped percent signs and named placeholders in one scan
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<percent>%%)
    |(?P<named>%\((?P<pname>[A-Za-z_][A-Za-z0-9_]*)\)s)
""", re.VERBOSE)


@dataclass(slots=True)
class BoundStatement:
    """SQL text plus the parameter values it references."""
    sql: str
    params: dict[str, Any] = field(default_factory=dict)

    def __iter__(self):
        yield self.sql
        yield self.params


def validate_identifier(identifier: str) -> str:
    """Check a caller-supplied table or column name against the identifier grammar.

    Returns the identifier stripped of surrounding whitespace.

    Raises
        ValidationError: If the name could smuggle SQL into a statement
    """
    name = identifier.strip() if isinstance(identifier, str) else identifier
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f'Invalid SQL identifier: {identifier!r}')
    return name


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote database identifiers.

    Schema-qualified names have each part quoted separately.

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '.'.join('"' + part.replace('"', '""') + '"' for part in identifier.split('.'))

    raise ValueError(f'Unknown dialect: {dialect}')


def split_columns(columns: str | Iterable[str]) -> tuple[str, ...]:
    """Normalize a column list given as ``'a,b'`` or ``['a', 'b']``.

    Every name is validated.
    """
    if isinstance(columns, str):
        columns = columns.split(',')
    names = tuple(validate_identifier(c) for c in columns)
    if not names:
        raise ValidationError('At least one column name is required')
    return names


def param_name(name: str, index: int | None = None) -> str:
    """Parameter name for a field, suffixed with the batch index when given.

    The separator keeps names unambiguous: ``a_1`` at index 0 is ``a_1_0``
    and can never equal ``a`` at index 10 (``a_10``).
    """
    if index is None:
        return name
    return f'{name}_{index}'


def placeholder(name: str, index: int | None = None) -> str:
    """Pyformat placeholder for a field."""
    return f'%({param_name(name, index)})s'


def standardize_placeholders(sql: str, dialect: str = 'postgresql') -> str:
    """Convert pyformat placeholders to the dialect's named style.

    PostgreSQL (psycopg) consumes pyformat directly. SQLite expects
    ``:name`` and a literal ``%`` instead of ``%%``.
    """
    if not sql or dialect != 'sqlite' or '%' not in sql:
        return sql

    def replace(match: re.Match) -> str:
        if match.group('string'):
            return match.group('string').replace('%%', '%')
        if match.group('percent'):
            return '%'
        return ':' + match.group('pname')

    return _TOKENIZE.sub(replace, sql)
