"""Connection settings for the test databases.

The PostgreSQL host and port are replaced once the test container is up.
"""
postgresql = {
    'drivername': 'postgresql',
    'hostname': 'localhost',
    'username': 'postgres',
    'password': 'postgres',
    'database': 'test_db',
    'port': 5432,
    'timeout': 30,
    'use_pool': False,
    }

sqlite = {
    'drivername': 'sqlite',
    'database': ':memory:',
    'use_pool': False,
    }
