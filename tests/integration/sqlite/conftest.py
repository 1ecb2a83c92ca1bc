"""
Fixtures for SQLite-specific integration tests.
"""
import pytest
import recordmap as rm

from tests.fixtures.sqlite import SCHEMA


@pytest.fixture
def sqlite_file_options(tmp_path):
    """Options for a file-based SQLite database shared by several connections."""
    options = {'drivername': 'sqlite', 'database': str(tmp_path / 'recordmap.db'), 'timeout': 5}
    with rm.connect(options) as cn:
        for ddl in SCHEMA:
            cn.execute(ddl)
    return options


@pytest.fixture
def sqlite_file_conn(sqlite_file_options):
    """File-based SQLite connection fixture for testing persistence across connections."""
    cn = rm.connect(sqlite_file_options)
    yield cn
    cn.close()
