"""
Caching for synthesized statements.

Statement text depends only on type metadata, dialect, kind, batch size
and conflict columns, so it can be reused freely. Entries are bounded by
an LRU policy; clearing a cache never changes behavior.
"""
import functools
import logging
import threading

import cachetools
from cachetools.keys import hashkey

logger = logging.getLogger(__name__)


class Cache:
    """Cache manager for recordmap.

    Thread-safe singleton that owns every named LRU cache.
    """

    _instance = None
    _caches: dict[str, cachetools.LRUCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get_cache(self, name: str, maxsize: int = 512) -> cachetools.LRUCache:
        """Get or create an LRU cache with the given name.

        Args:
            name: Name of the cache
            maxsize: Maximum cache size

        Returns
            LRUCache instance
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.LRUCache(maxsize=maxsize)
        return self._caches[name]

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()


def cacheable_statement(cache_name: str, maxsize: int = 512):
    """Decorator for caching statement builder results.

    Results are keyed by every argument, which must all be hashable.
    LRU bookkeeping mutates on read, so lookups take the lock too.

    Args:
        cache_name: Name of the cache
        maxsize: Maximum cache size
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            manager = Cache.get_instance()
            cache = manager.get_cache(cache_name, maxsize=maxsize)
            cache_key = hashkey(*args, **kwargs)

            with manager.lock:
                result = cache.get(cache_key)
            if result is not None:
                return result

            logger.debug(f'Cache miss for {func.__name__}')
            result = func(*args, **kwargs)
            with manager.lock:
                cache[cache_key] = result
            return result

        return wrapper
    return decorator


def clear_caches() -> None:
    """Clear every statement cache."""
    Cache.get_instance().clear_all()
