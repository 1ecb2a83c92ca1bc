"""
Fixtures for database-agnostic integration tests.

This module provides parametrized fixtures that allow tests to run
against multiple database backends (PostgreSQL and SQLite).
"""
import pytest

BACKENDS = [
    pytest.param('pg_conn', marks=pytest.mark.postgres, id='pg'),
    pytest.param('sqlite_conn', marks=pytest.mark.sqlite, id='sl'),
    ]

ASYNC_BACKENDS = [
    pytest.param('async_pg_conn', marks=pytest.mark.postgres, id='pg'),
    pytest.param('async_sqlite_conn', marks=pytest.mark.sqlite, id='sl'),
    ]


@pytest.fixture(params=BACKENDS)
def db_conn(request):
    """Parametrized fixture providing connection for both databases.

    Tests using this fixture will run twice - once for each database.
    The PostgreSQL container is only started when a pg test is selected.
    """
    return request.getfixturevalue(request.param)


@pytest.fixture(params=ASYNC_BACKENDS)
def async_db_conn(request):
    """Asyncio counterpart of ``db_conn``."""
    return request.getfixturevalue(request.param)


@pytest.fixture
def dialect(db_conn):
    """Get the dialect name from the connection."""
    return db_conn.dialect
