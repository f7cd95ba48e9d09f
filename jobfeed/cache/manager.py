"""
Main cache orchestration over a key-value store, with per-kind TTL and
stale-while-revalidate.
"""
import threading
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from concurrent.futures import ThreadPoolExecutor

from .core import (
    BatchSetResult,
    CacheEntry,
    CacheHealth,
    CacheKind,
    CacheSource,
    EnvelopeError,
    kind_name,
)
from .coalescer import RequestCoalescer
from .store import CacheStore
from .ttl_policies import DEFAULT_TTL_SECONDS, TTL_CONFIG, get_ttl_for_kind

logger = logging.getLogger("cache.manager")

HEALTH_CHECK_KEY = "health_check_test"


class CacheManager:
    """
    Cache orchestration with:
    - Namespaced keys ``{environment}_{kind}:{key}``
    - Versioned envelopes carrying creation time and TTL
    - Per-kind TTL table with a default fallback
    - Stale-while-revalidate with detached background refresh
    - Soft failure: store errors are logged and read as misses

    There is no single-flight locking unless ``single_flight=True``: two
    callers missing on the same cold key may both run the generator, and the
    last write wins.
    """

    def __init__(
        self,
        store: Optional[CacheStore],
        environment: str = "development",
        ttl_table: Optional[Mapping[str, Mapping[str, int]]] = None,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        single_flight: bool = False,
        default_swr_seconds: Optional[int] = None,
        max_revalidation_workers: int = 4,
        coalesce_timeout: float = 30.0,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Backing store, or None to run with caching disabled
            environment: Namespace prefix for every key
            ttl_table: kind -> {"fresh_ttl", "stale_ttl"} (see ttl_policies)
            default_ttl: TTL for kinds missing from the table
            clock: Returns the current time in epoch seconds
            single_flight: Coalesce concurrent misses on the same key
            default_swr_seconds: Stale window for SWR reads when the caller
                passes none; the kind's stale_ttl is used if this is None too
            max_revalidation_workers: Thread pool size for background revalidation
            coalesce_timeout: Timeout for waiting on coalesced requests
        """
        if store is None:
            logger.warning("CacheManager: no store provided - caching is disabled")
        self._store = store
        self._environment = environment
        self._ttl_table = ttl_table if ttl_table is not None else TTL_CONFIG
        self._default_ttl = default_ttl
        self._clock = clock
        self._default_swr_seconds = default_swr_seconds
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout) if single_flight else None

        # Background revalidation
        self._revalidation_pool = ThreadPoolExecutor(
            max_workers=max_revalidation_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._revalidating: set = set()
        self._revalidating_lock = threading.Lock()

        # Kinds this manager has written beyond CacheKind and the TTL table
        self._written_kinds: set = set()

        self._stats_lock = threading.Lock()
        self.reset_stats()

    @property
    def enabled(self) -> bool:
        return self._store is not None

    @property
    def environment(self) -> str:
        return self._environment

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    # =========================================================================
    # KEYS AND ENVELOPES
    # =========================================================================

    def build_key(self, key: str, kind: Any = "default") -> str:
        """Build the namespaced store key for ``key`` of ``kind``."""
        prefix = f"{self._environment}_{kind_name(kind)}"
        return f"{prefix}:{key}" if key else prefix

    def _known_kinds(self) -> set:
        with self._stats_lock:
            written = set(self._written_kinds)
        return {kind.value for kind in CacheKind} | set(self._ttl_table) | {"default"} | written

    def _environment_keys(self) -> List[str]:
        """
        Stored keys of this environment.

        Keys are matched as ``{environment}_{kind}:`` for kinds this manager
        knows, so environment ``test`` never picks up keys of ``test_foo``.

        Raises:
            Exception: Whatever the store raises
        """
        prefix = f"{self._environment}_"
        kinds = self._known_kinds()
        return [
            cache_key for cache_key in self._store.list(prefix)
            if cache_key[len(prefix):].split(":", 1)[0] in kinds
        ]

    def _read_entry(self, cache_key: str) -> Optional[CacheEntry]:
        """Read and decode an envelope. Store and decode errors read as a miss."""
        try:
            raw = self._store.get(cache_key)
        except Exception as e:
            self._count("errors")
            logger.error(f"Cache get error for {cache_key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return CacheEntry.from_bytes(raw)
        except EnvelopeError as e:
            self._count("errors")
            logger.warning(f"Discarding unreadable cache entry {cache_key}: {e}")
            self._delete_key(cache_key)
            return None

    def _delete_key(self, cache_key: str) -> bool:
        try:
            self._store.delete(cache_key)
            return True
        except Exception as e:
            self._count("errors")
            logger.error(f"Cache delete error for {cache_key}: {e}")
            return False

    def _lookup(self, key: str, kind: Any) -> Tuple[bool, Any]:
        """(found, payload) for a fresh entry; expired entries are deleted."""
        if self._store is None:
            self._count("misses")
            return False, None

        cache_key = self.build_key(key, kind)
        entry = self._read_entry(cache_key)

        if entry is None:
            self._count("misses")
            logger.debug(f"CACHE MISS: {cache_key}")
            return False, None

        now_ms = self._now_ms()
        if entry.is_expired(now_ms):
            self._count("misses")
            logger.info(f"CACHE EXPIRED: {cache_key} [age={entry.age_seconds(now_ms):.1f}s]")
            self._delete_key(cache_key)
            return False, None

        self._count("hits_fresh")
        logger.debug(f"CACHE HIT (fresh): {cache_key} [age={entry.age_seconds(now_ms):.1f}s]")
        return True, entry.payload

    # =========================================================================
    # BASIC OPERATIONS
    # =========================================================================

    def get(self, key: str, kind: Any = "default") -> Optional[Any]:
        """
        Get a fresh payload from the cache.

        Returns:
            The payload, or None on a miss, on expiry, or if the store failed
        """
        _, payload = self._lookup(key, kind)
        return payload

    def set(
        self,
        key: str,
        payload: Any,
        kind: Any = "default",
        ttl_override: Optional[int] = None,
        stale_seconds: Optional[int] = None,
    ) -> bool:
        """
        Write a payload wrapped in a cache envelope.

        The store keeps the entry for ``ttl + stale window`` so that
        stale-while-revalidate can still find it after the TTL lapses.

        Args:
            key: Cache key (namespaced internally)
            payload: JSON-serializable data
            kind: Cache kind, determines the TTL
            ttl_override: Explicit TTL in seconds
            stale_seconds: Stale window to retain the entry for; defaults to the kind's

        Returns:
            True if the store accepted the write
        """
        if self._store is None:
            logger.debug(f"Cache disabled - skipping set for {key}")
            return False

        cache_key = self.build_key(key, kind)
        fresh_ttl, stale_ttl = get_ttl_for_kind(kind, self._ttl_table, self._default_ttl)
        ttl = ttl_override if ttl_override is not None else fresh_ttl
        stale = stale_ttl if stale_seconds is None else stale_seconds

        entry = CacheEntry(
            payload=payload,
            created_at_ms=self._now_ms(),
            ttl_seconds=ttl,
            kind=kind_name(kind),
        )

        try:
            data = entry.to_bytes()
        except (TypeError, ValueError) as e:
            self._count("errors")
            logger.error(f"Cache set error for {cache_key}: payload is not serializable ({e})")
            return False

        try:
            # A zero store TTL means no expiry, so retention is at least a second
            self._store.set(cache_key, data, max(ttl + max(stale, 0), 1))
        except Exception as e:
            self._count("errors")
            logger.error(f"Cache set error for {cache_key}: {e}")
            return False

        with self._stats_lock:
            self._written_kinds.add(kind_name(kind))
        logger.debug(f"Cached {cache_key} with TTL {ttl}s")
        return True

    def delete(self, key: str, kind: Any = "default") -> bool:
        """Delete one entry. Returns False if the store failed."""
        if self._store is None:
            return False
        cache_key = self.build_key(key, kind)
        deleted = self._delete_key(cache_key)
        if deleted:
            logger.debug(f"Deleted cache entry {cache_key}")
        return deleted

    # =========================================================================
    # READ-THROUGH
    # =========================================================================

    def _fill(
        self,
        key: str,
        kind: Any,
        generator: Callable[[], Any],
        ttl_override: Optional[int] = None,
        stale_seconds: Optional[int] = None,
    ) -> Any:
        """Run the generator and cache its result. Generator errors propagate."""

        def generate_and_store():
            data = generator()
            self.set(key, data, kind, ttl_override=ttl_override, stale_seconds=stale_seconds)
            return data

        if self._coalescer is not None:
            return self._coalescer.get_or_fetch(self.build_key(key, kind), generate_and_store)
        return generate_and_store()

    def get_or_set(
        self,
        key: str,
        kind: Any,
        generator: Callable[[], Any],
        ttl_override: Optional[int] = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the cached payload, or run ``generator`` and cache its result.

        Args:
            key: Cache key
            kind: Cache kind
            generator: Zero-argument callable producing the payload on a miss
            ttl_override: Explicit TTL for the stored result
            force_refresh: Skip the lookup and always run the generator

        Raises:
            Exception: Whatever the generator raises; nothing is cached then
        """
        if not force_refresh:
            found, payload = self._lookup(key, kind)
            if found:
                return payload
        else:
            logger.info(f"FORCE REFRESH: {self.build_key(key, kind)}")

        return self._fill(key, kind, generator, ttl_override=ttl_override)

    def get_with_stale_while_revalidate(
        self,
        key: str,
        kind: Any,
        generator: Callable[[], Any],
        swr_seconds: Optional[int] = None,
    ) -> Any:
        """
        Serve cached data past its TTL while refreshing it in the background.

        - Fresh entry: returned as is
        - Age within ``ttl + swr_seconds``: stale payload returned, refresh
          submitted to the revalidation pool and never awaited
        - Otherwise: generator runs inline, like get_or_set

        Args:
            swr_seconds: Stale window; defaults to default_swr_seconds, then
                the kind's stale_ttl
        """
        if self._store is None:
            self._count("misses")
            return generator()

        if swr_seconds is None:
            swr_seconds = self._default_swr_seconds
        if swr_seconds is None:
            _, swr_seconds = get_ttl_for_kind(kind, self._ttl_table, self._default_ttl)

        cache_key = self.build_key(key, kind)
        entry = self._read_entry(cache_key)
        now_ms = self._now_ms()

        if entry is not None:
            source = entry.cache_source(now_ms, swr_seconds)
            if source is CacheSource.FRESH:
                self._count("hits_fresh")
                logger.debug(f"CACHE HIT (fresh): {cache_key} [age={entry.age_seconds(now_ms):.1f}s]")
                return entry.payload

            if source is CacheSource.STALE:
                self._count("hits_stale")
                logger.info(
                    f"CACHE HIT (stale, revalidating): {cache_key} "
                    f"[age={entry.age_seconds(now_ms):.1f}s]"
                )
                self._trigger_background_revalidate(key, kind, generator, swr_seconds)
                return entry.payload

            logger.info(f"CACHE EXPIRED: {cache_key} [age={entry.age_seconds(now_ms):.1f}s]")
        else:
            logger.debug(f"CACHE MISS: {cache_key}")

        self._count("misses")
        return self._fill(key, kind, generator, stale_seconds=swr_seconds)

    def _trigger_background_revalidate(
        self,
        key: str,
        kind: Any,
        generator: Callable[[], Any],
        swr_seconds: int,
    ) -> None:
        """Submit a detached refresh; at most one in flight per key."""
        cache_key = self.build_key(key, kind)
        with self._revalidating_lock:
            if cache_key in self._revalidating:
                logger.debug(f"Already revalidating: {cache_key}")
                return
            self._revalidating.add(cache_key)

        def do_revalidate():
            try:
                logger.debug(f"Background revalidation started: {cache_key}")
                data = generator()
                self.set(key, data, kind, stale_seconds=swr_seconds)
                self._count("revalidations")
                logger.info(f"Background refresh completed for {cache_key}")
            except Exception as e:
                self._count("revalidation_failures")
                logger.warning(f"Background refresh failed for {cache_key}: {e}")
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(cache_key)

        try:
            self._revalidation_pool.submit(do_revalidate)
        except RuntimeError as e:
            # Pool already shut down
            with self._revalidating_lock:
                self._revalidating.discard(cache_key)
            logger.warning(f"Background refresh not scheduled for {cache_key}: {e}")

    # =========================================================================
    # BATCH
    # =========================================================================

    def get_batch(self, items: Iterable[Tuple[str, Any]]) -> List[Optional[Any]]:
        """
        Get several entries independently.

        Args:
            items: (key, kind) pairs

        Returns:
            Payloads in input order, None where a key missed
        """
        return [self.get(key, kind) for key, kind in items]

    def set_batch(self, items: Iterable[Mapping[str, Any]]) -> List[BatchSetResult]:
        """
        Set several entries independently.

        Args:
            items: Mappings with "key", "payload", and optional "kind" and "ttl"

        Returns:
            One result per item; a failed write never affects the others
        """
        results = []
        for item in items:
            key = item["key"]
            success = self.set(
                key,
                item.get("payload"),
                item.get("kind", "default"),
                ttl_override=item.get("ttl"),
            )
            results.append(
                BatchSetResult(
                    key=key,
                    success=success,
                    error=None if success else "cache write failed",
                )
            )
        return results

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear(self, kind: Optional[Any] = None) -> int:
        """
        Delete all entries of one kind, or all entries of this environment.

        Returns:
            Number of entries deleted
        """
        if self._store is None:
            return 0

        prefix = f"{self.build_key('', kind)}:" if kind is not None else f"{self._environment}_"
        try:
            keys = self._store.list(prefix) if kind is not None else self._environment_keys()
        except Exception as e:
            self._count("errors")
            logger.error(f"Cache clear error for prefix {prefix}: {e}")
            return 0

        deleted = sum(1 for cache_key in keys if self._delete_key(cache_key))
        if kind is not None:
            logger.info(f"Cleared {deleted} entries for cache kind: {kind_name(kind)}")
        else:
            logger.info(f"Cleared {deleted} cache entries")

        self.reset_stats()
        return deleted

    def health_check(self) -> CacheHealth:
        """Write, read back and delete a sentinel entry."""
        if self._store is None:
            return CacheHealth(healthy=False, message="Cache store not configured")

        test_data = {"test": True, "timestamp": self._now_ms()}

        if not self.set(HEALTH_CHECK_KEY, test_data, CacheKind.TEST):
            return CacheHealth(healthy=False, message="Cache write failed")

        read_back = self.get(HEALTH_CHECK_KEY, CacheKind.TEST)
        if not isinstance(read_back, dict) or read_back.get("test") is not True:
            return CacheHealth(healthy=False, message="Cache read failed")

        if not self.delete(HEALTH_CHECK_KEY, CacheKind.TEST):
            return CacheHealth(healthy=False, message="Cache delete failed")

        return CacheHealth(
            healthy=True,
            message="All cache operations successful",
            stats=self.get_stats(),
        )

    def get_cache_size(self) -> Dict[str, Any]:
        """Count stored keys per kind for this environment."""
        timestamp = datetime.now(timezone.utc).isoformat()
        if self._store is None:
            return {"total_keys": 0, "size_by_kind": {}, "timestamp": timestamp}

        prefix = f"{self._environment}_"
        try:
            keys = self._environment_keys()
        except Exception as e:
            self._count("errors")
            logger.error(f"Failed to get cache size: {e}")
            return {
                "total_keys": 0,
                "size_by_kind": {},
                "error": str(e),
                "timestamp": timestamp,
            }

        size_by_kind: Dict[str, int] = {}
        for cache_key in keys:
            kind = cache_key[len(prefix):].split(":", 1)[0] or "unknown"
            size_by_kind[kind] = size_by_kind.get(kind, 0) + 1

        return {
            "total_keys": len(keys),
            "size_by_kind": size_by_kind,
            "timestamp": timestamp,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        total_hits = stats["hits_fresh"] + stats["hits_stale"]
        total_requests = total_hits + stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        result = {
            "hits_fresh": stats["hits_fresh"],
            "hits_stale": stats["hits_stale"],
            "misses": stats["misses"],
            "errors": stats["errors"],
            "revalidations": stats["revalidations"],
            "revalidation_failures": stats["revalidation_failures"],
            "hit_rate_percent": round(hit_rate, 1),
            "total_requests": total_requests,
            "revalidating_count": len(self._revalidating),
            "last_reset": stats["last_reset"],
        }
        if self._coalescer is not None:
            result["coalescer"] = self._coalescer.get_stats()
        return result

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = {
                "hits_fresh": 0,
                "hits_stale": 0,
                "misses": 0,
                "errors": 0,
                "revalidations": 0,
                "revalidation_failures": 0,
                "last_reset": datetime.now(timezone.utc).isoformat(),
            }

    def close(self) -> None:
        """Wait for in-flight background refreshes and stop the pool."""
        self._revalidation_pool.shutdown(wait=True)
