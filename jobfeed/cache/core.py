"""
Core cache data structures.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from enum import Enum


SCHEMA_VERSION = "1.0"


class CacheKind(Enum):
    """Kinds of cached data, each with its own TTL."""
    LISTINGS = "listings"                   # Listing summary pages
    DETAILS = "details"                     # Per-listing detail
    EMPLOYER_DETAILS = "employer_details"   # Per-employer detail
    FEED = "feed"                           # Rendered output, owned by callers
    API_HEALTH = "api_health"               # Upstream health snapshots
    TEST = "test"                           # Health check sentinel


class CacheSource(Enum):
    """Source of cached data."""
    FRESH = "fresh"       # Within TTL
    STALE = "stale"       # Past TTL but within stale window, revalidating
    UPSTREAM = "upstream" # Produced by the generator


def kind_name(kind: Any) -> str:
    """Accept either a CacheKind or a plain string."""
    if isinstance(kind, CacheKind):
        return kind.value
    return str(kind)


class EnvelopeError(ValueError):
    """Raised when stored bytes are not a readable cache envelope."""


@dataclass
class CacheEntry:
    """
    Versioned envelope written to the store around every payload.

    Timestamps are epoch milliseconds so entries written by other
    processes compare against the same clock.
    """
    payload: Any
    created_at_ms: int
    ttl_seconds: int
    kind: str
    schema_version: str = SCHEMA_VERSION

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.created_at_ms

    def age_seconds(self, now_ms: int) -> float:
        """Seconds since the entry was written."""
        return self.age_ms(now_ms) / 1000.0

    def is_fresh(self, now_ms: int) -> bool:
        """Check if the entry is within its TTL."""
        return self.age_ms(now_ms) < self.ttl_seconds * 1000

    def is_expired(self, now_ms: int) -> bool:
        return not self.is_fresh(now_ms)

    def is_usable_stale(self, now_ms: int, stale_seconds: int) -> bool:
        """Check if the entry is past TTL but can still be served while revalidating."""
        age = self.age_ms(now_ms)
        ttl_ms = self.ttl_seconds * 1000
        return ttl_ms <= age < ttl_ms + stale_seconds * 1000

    def cache_source(self, now_ms: int, stale_seconds: int = 0) -> CacheSource:
        """Determine the cache source status."""
        if self.is_fresh(now_ms):
            return CacheSource.FRESH
        elif self.is_usable_stale(now_ms, stale_seconds):
            return CacheSource.STALE
        else:
            return CacheSource.UPSTREAM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "created_at_ms": self.created_at_ms,
            "ttl_seconds": self.ttl_seconds,
            "kind": self.kind,
            "schema_version": self.schema_version,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        """
        Decode an envelope written by to_bytes.

        Raises:
            EnvelopeError: If the bytes are not JSON, miss a field, or carry
                a schema version this code does not understand.
        """
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise EnvelopeError(f"undecodable cache entry: {e}") from e

        if not isinstance(data, dict):
            raise EnvelopeError("cache entry is not an object")

        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise EnvelopeError(f"unsupported schema version: {version!r}")

        try:
            return cls(
                payload=data["payload"],
                created_at_ms=int(data["created_at_ms"]),
                ttl_seconds=int(data["ttl_seconds"]),
                kind=str(data["kind"]),
                schema_version=version,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EnvelopeError(f"malformed cache entry: {e}") from e


@dataclass
class CacheHealth:
    """Result of a cache write/read/delete round trip."""
    healthy: bool
    message: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    stats: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        result = {
            "healthy": self.healthy,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.stats is not None:
            result["stats"] = self.stats
        return result


@dataclass
class BatchSetResult:
    """Per-key outcome of CacheManager.set_batch."""
    key: str
    success: bool
    error: Optional[str] = None
