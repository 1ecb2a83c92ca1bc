"""
Base strategy interface for dialect-specific behavior.

The strategy pattern keeps everything that differs between backends in one
place: identifier quoting, placeholder conversion, bind-parameter limits,
engine URLs, connection setup, transaction demarcation and how an upsert
reports whether each row was inserted or updated. Statement synthesis and
orchestration stay dialect-agnostic and ask the strategy.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from recordmap.sql import quote_identifier as sql_quote_identifier

if TYPE_CHECKING:
    from recordmap.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    #: Largest number of bind parameters one statement may carry
    max_parameters: int = 32766

    #: Text appended to an upsert so the backend reports one boolean per row
    upsert_outcome_clause: str | None = None

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g. 'postgresql', 'sqlite')."""

    @property
    def reports_upsert_outcome(self) -> bool:
        """Whether upsert statements return an ``inserted`` flag per row."""
        return self.upsert_outcome_clause is not None

    def quote_identifier(self, identifier: str) -> str:
        """Quote a table or column name for this dialect.
        """
        return sql_quote_identifier(identifier, self.dialect_name)

    def standardize_sql(self, sql: str) -> str:
        """Convert pyformat placeholders to the driver's style.

        Default is a no-op for drivers that consume pyformat directly.
        """
        return sql

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Option names that must be set to connect.
        """
        return []

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy URL for a blocking engine.
        """

    @abstractmethod
    def build_async_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy URL for an asyncio engine.
        """

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return extra ``create_engine`` kwargs for this dialect."""
        return {}

    @abstractmethod
    def configure_connection(self, raw_conn: Any) -> None:
        """Prepare a fresh driver connection (auto-commit, type adapters).
        """

    @abstractmethod
    async def configure_async_connection(self, raw_conn: Any) -> None:
        """Prepare a fresh asyncio driver connection.
        """

    @abstractmethod
    def begin(self, raw_conn: Any) -> None:
        """Leave auto-commit mode and open a transaction.
        """

    @abstractmethod
    def end(self, raw_conn: Any) -> None:
        """Return to auto-commit mode after commit or rollback.
        """

    @abstractmethod
    async def begin_async(self, raw_conn: Any) -> None:
        """Asyncio variant of :meth:`begin`.
        """

    @abstractmethod
    async def end_async(self, raw_conn: Any) -> None:
        """Asyncio variant of :meth:`end`.
        """

    def create_cursor(self, raw_conn: Any) -> Any:
        """Open a driver cursor returning tuple rows."""
        return raw_conn.cursor()

    @abstractmethod
    async def create_async_cursor(self, raw_conn: Any) -> Any:
        """Open an asyncio driver cursor returning tuple rows.
        """

    def __repr__(self) -> str:
        return f'{type(self).__name__}()'
