"""
Fixtures for PostgreSQL-specific integration tests.
"""
import config
import pytest
import recordmap as rm


@pytest.fixture
def pooled_pg_conn(pg_conn):
    """Connection drawn from a SQLAlchemy pool."""
    cn = rm.connect(config.postgresql, use_pool=True, pool_max_connections=2)
    yield cn
    cn.close()
