"""
PostgreSQL-specific strategy implementation.

psycopg 3 consumes pyformat placeholders natively, so statements pass
through unchanged. Connections run in auto-commit mode outside explicit
transactions, and upserts report their outcome through the system column
``xmax``, which is zero only for a freshly inserted row version.
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from recordmap.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from recordmap.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    max_parameters = 65535
    upsert_outcome_clause = 'RETURNING (xmax = 0) AS inserted'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def _url(self, options: 'DatabaseOptions') -> sa.URL:
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        return self._url(options)

    def build_async_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """The psycopg dialect serves both engines; SQLAlchemy picks the async driver."""
        return self._url(options)

    def configure_connection(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.

        Dialect probes run by SQLAlchemy on first connect may leave a
        transaction open, which must end before auto-commit can change.
        """
        raw_conn.rollback()
        raw_conn.autocommit = True

    async def configure_async_connection(self, raw_conn: Any) -> None:
        await raw_conn.rollback()
        await raw_conn.set_autocommit(True)

    def begin(self, raw_conn: Any) -> None:
        """psycopg opens the transaction implicitly on the next statement.
        """
        raw_conn.autocommit = False

    def end(self, raw_conn: Any) -> None:
        raw_conn.autocommit = True

    async def create_async_cursor(self, raw_conn: Any) -> Any:
        return raw_conn.cursor()

    async def begin_async(self, raw_conn: Any) -> None:
        await raw_conn.set_autocommit(False)

    async def end_async(self, raw_conn: Any) -> None:
        await raw_conn.set_autocommit(True)
