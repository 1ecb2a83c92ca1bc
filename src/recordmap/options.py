"""
Connection options.

Options are read from keyword arguments, a dict, or ``RECORDMAP_*``
environment variables, in that order of precedence.
"""
import os
import sys
from collections.abc import Mapping
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from recordmap.strategy import get_available_dialects, get_strategy_class
from recordmap.strategy import is_supported_dialect

__all__ = ['DatabaseOptions']


def _scriptname() -> str | None:
    """Name of the running script, without extension."""
    if not sys.argv or not sys.argv[0]:
        return None
    return os.path.splitext(os.path.basename(sys.argv[0]))[0] or None


class DatabaseOptions(BaseSettings):
    """Options

    supported driver names: `postgresql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    model_config = SettingsConfigDict(env_prefix='RECORDMAP_', case_sensitive=False,
                                      extra='forbid', frozen=True)

    drivername: str = 'postgresql'
    hostname: str | None = None
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    database: str | None = None
    port: int = 0
    timeout: int = 0
    appname: str | None = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    @model_validator(mode='before')
    @classmethod
    def _default_appname(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get('appname'):
            data = {**data, 'appname': _scriptname() or 'python_console'}
        return data

    @model_validator(mode='after')
    def _check_driver(self) -> 'DatabaseOptions':
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        get_strategy_class(self.drivername).validate_options(self)
        return self

    @classmethod
    def load(cls, options: 'DatabaseOptions | Mapping[str, Any] | None' = None,
             **overrides: Any) -> 'DatabaseOptions':
        """Build options from an instance, a mapping, or the environment.

        Keyword overrides win over every other source.
        """
        if isinstance(options, cls):
            if not overrides:
                return options
            return cls(**{**options.model_dump(), **overrides})
        return cls(**{**dict(options or {}), **overrides})
