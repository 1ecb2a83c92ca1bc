"""
Engine registry and connection lifecycle.
"""
import pytest
import recordmap as rm
from recordmap import connection
from recordmap.options import DatabaseOptions


@pytest.fixture(autouse=True)
def fresh_registry():
    rm.dispose_all_engines()
    yield
    rm.dispose_all_engines()


@pytest.mark.sqlite
def test_engine_shared_for_equal_options():
    options = DatabaseOptions(drivername='sqlite', database=':memory:', appname='tests')
    first = connection.get_engine_for_options(options)
    second = connection.get_engine_for_options(options.model_copy())
    assert first is second


@pytest.mark.sqlite
def test_engine_per_option_set():
    memory = DatabaseOptions(drivername='sqlite', database=':memory:', appname='tests')
    timeout = DatabaseOptions(drivername='sqlite', database=':memory:', appname='tests', timeout=3)
    assert connection.get_engine_for_options(memory) is not connection.get_engine_for_options(timeout)


@pytest.mark.sqlite
def test_dispose_clears_registry():
    options = DatabaseOptions(drivername='sqlite', database=':memory:', appname='tests')
    first = connection.get_engine_for_options(options)
    rm.dispose_all_engines()
    assert connection.get_engine_for_options(options) is not first


@pytest.mark.sqlite
def test_connect_with_keyword_overrides(monkeypatch):
    monkeypatch.setenv('RECORDMAP_DRIVERNAME', 'sqlite')
    with rm.connect(database=':memory:') as cn:
        assert cn.dialect == 'sqlite'
        assert cn.options.database == ':memory:'
        assert cn.scalar('SELECT 1') == 1
    assert cn.closed


@pytest.mark.sqlite
def test_custom_registry():
    registry = rm.TypeRegistry()
    with rm.connect({'drivername': 'sqlite', 'database': ':memory:'}, registry=registry) as cn:
        assert cn.registry is registry
