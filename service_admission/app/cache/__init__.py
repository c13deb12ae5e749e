"""
Cache package for the Admission Service.

Holds the authorized node key set and its freshness timestamp in an
external key-value store (Redis in production) so that every gateway
instance decides against the same data.
"""

from shared.errors import ConfigurationError

from .kv_store import KeyValueStore, RedisKeyValueStore, InMemoryKeyValueStore
from .store import AdmissionCacheStore, format_timestamp, parse_timestamp


def create_backend(kind: str, redis_url: str) -> KeyValueStore:
    """Build the configured key-value backend."""
    if kind == "memory":
        return InMemoryKeyValueStore()
    if kind == "redis":
        return RedisKeyValueStore(redis_url)
    raise ConfigurationError(f"Unknown key-value backend: {kind}", details={"kv_backend": kind})


__all__ = [
    "KeyValueStore",
    "RedisKeyValueStore",
    "InMemoryKeyValueStore",
    "AdmissionCacheStore",
    "create_backend",
    "format_timestamp",
    "parse_timestamp",
]
