"""
Exception classes for record mapping and database operations.

Validation errors are raised by recordmap itself before any statement
reaches the backend. Driver errors are never wrapped: the tuples at the
bottom of this module group them for use in ``except`` clauses.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all recordmap errors.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


class MissingKeyError(ValidationError):
    """Operation needs key fields but the mapped type declares none.
    """

    def __init__(self, cls: type, operation: str | None = None) -> None:
        self.cls = cls
        self.operation = operation
        action = f' for {operation}' if operation else ''
        super().__init__(
            f'Invalid object{action}. At least one field must be marked as key on type {cls.__name__}')


class KeyArityMismatchError(ValidationError):
    """Number of ids passed to get() differs from the number of key fields.
    """

    def __init__(self, cls: type, expected: int, actual: int) -> None:
        self.cls = cls
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Key count ({expected}) and argument count ({actual}) must match for {cls.__name__}')


BackendError = (
    psycopg.Error,
    sqlite3.Error,
    )

DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    sqlite3.ProgrammingError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    )
