"""
TTL configuration per cache kind.
"""
from typing import Any, Dict, Mapping, Optional, Tuple

from .core import CacheKind, kind_name


DEFAULT_TTL_SECONDS = 1800  # 30 minutes

# TTL Configuration by kind (in seconds)
TTL_CONFIG: Dict[str, Dict[str, int]] = {
    CacheKind.LISTINGS.value: {
        "fresh_ttl": 900,         # 15 minutes
        "stale_ttl": 300,         # Can serve stale for 5 more minutes
    },
    CacheKind.DETAILS.value: {
        "fresh_ttl": 3600,        # 1 hour
        "stale_ttl": 1800,        # 30 minutes more stale
    },
    CacheKind.EMPLOYER_DETAILS.value: {
        "fresh_ttl": 7200,        # 2 hours
        "stale_ttl": 3600,
    },
    CacheKind.FEED.value: {
        "fresh_ttl": 300,         # 5 minutes
        "stale_ttl": 300,
    },
    CacheKind.API_HEALTH.value: {
        "fresh_ttl": 60,          # 1 minute, no stale serving
        "stale_ttl": 0,
    },
}


def build_ttl_table(overrides: Optional[Mapping[str, int]] = None) -> Dict[str, Dict[str, int]]:
    """
    Merge configured fresh TTLs over the built-in table.

    Args:
        overrides: kind -> fresh TTL seconds, usually from settings

    Returns:
        A new table; TTL_CONFIG itself is never mutated
    """
    table = {kind: dict(config) for kind, config in TTL_CONFIG.items()}
    for kind, seconds in (overrides or {}).items():
        table.setdefault(kind, {"stale_ttl": 0})["fresh_ttl"] = int(seconds)
    return table


def get_ttl_for_kind(
    kind: Any,
    table: Optional[Mapping[str, Mapping[str, int]]] = None,
    default_ttl: int = DEFAULT_TTL_SECONDS,
) -> Tuple[int, int]:
    """
    Get TTL configuration for a cache kind.

    Unknown kinds fall back to the default TTL with no stale window.

    Returns:
        (fresh_ttl, stale_ttl)
    """
    table = TTL_CONFIG if table is None else table
    config = table.get(kind_name(kind))
    if not config:
        return default_ttl, 0
    return (
        int(config.get("fresh_ttl", default_ttl)),
        int(config.get("stale_ttl", 0)),
    )
