"""
Single-flight coalescing for cache fills.

While one caller runs the generator for a key, later callers for the same
key block on its Future and receive the same payload or exception.
CacheManager only routes fills through here when single_flight=True.
"""
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    One generator call per key at a time.

    Usage:
        coalescer = RequestCoalescer(timeout=30.0)
        detail = coalescer.get_or_fetch(
            "development_details:detail:42",
            lambda: client.fetch_detail("42"),
        )
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a follower waits for the leader's result
        """
        self._timeout = timeout
        self._calls: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._leaders = 0
        self._followers = 0

    def get_or_fetch(self, cache_key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Run ``fetch_fn`` unless a call for ``cache_key`` is already running,
        in which case wait for that call instead.

        Raises:
            TimeoutError: A follower gave up waiting on the leader
            Exception: Whatever fetch_fn raised, for leader and followers alike
        """
        with self._lock:
            future = self._calls.get(cache_key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[cache_key] = future
                self._leaders += 1
            else:
                self._followers += 1

        if not leader:
            logger.debug(f"Joining in-flight fill for {cache_key}")
            try:
                return future.result(timeout=self._timeout)
            except FutureTimeoutError:
                logger.error(f"Timed out after {self._timeout}s waiting on fill for {cache_key}")
                raise TimeoutError(f"Fill for {cache_key} did not finish within {self._timeout}s")

        try:
            future.set_result(fetch_fn())
        except Exception as e:
            logger.warning(f"Fill failed for {cache_key}: {e}")
            future.set_exception(e)
        finally:
            with self._lock:
                self._calls.pop(cache_key, None)

        return future.result()

    @property
    def active_requests(self) -> int:
        with self._lock:
            return len(self._calls)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._calls),
                "active_keys": sorted(self._calls),
                "leaders": self._leaders,
                "coalesced": self._followers,
            }
