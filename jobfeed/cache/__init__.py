"""
Key-value caching with per-kind TTL, versioned envelopes, and stale-while-revalidate.
"""
from .core import (
    BatchSetResult,
    CacheEntry,
    CacheHealth,
    CacheKind,
    CacheSource,
    EnvelopeError,
    SCHEMA_VERSION,
)
from .ttl_policies import (
    DEFAULT_TTL_SECONDS,
    TTL_CONFIG,
    build_ttl_table,
    get_ttl_for_kind,
)
from .store import CacheStore, InMemoryCacheStore, RedisCacheStore
from .coalescer import RequestCoalescer
from .manager import CacheManager

__all__ = [
    # Core types
    "BatchSetResult",
    "CacheEntry",
    "CacheHealth",
    "CacheKind",
    "CacheSource",
    "EnvelopeError",
    "SCHEMA_VERSION",
    # TTL policies
    "DEFAULT_TTL_SECONDS",
    "TTL_CONFIG",
    "build_ttl_table",
    "get_ttl_for_kind",
    # Stores
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    # Coalescing
    "RequestCoalescer",
    # Manager
    "CacheManager",
]
