"""
Upstream catalog API client.

All HTTP details live here: timeouts, envelope validation, retry with
exponential backoff, and bounded fan-out for per-listing detail fetches.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from concurrent.futures import ThreadPoolExecutor

import requests
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from jobfeed.errors import (
    NetworkError,
    RetryExhaustedError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    is_retryable,
)
from .envelope import unwrap

logger = logging.getLogger("upstream.client")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_DETAIL_CONCURRENCY = 5
DEFAULT_DETAIL_BATCH_DELAY = 0.1
DEFAULT_PAGE_DELAY = 0.2

LISTINGS_PATH = "listings"
LISTING_DETAIL_PATH = "listings/{id}"
EMPLOYER_DETAIL_PATH = "employers/{id}"


@dataclass
class BatchFetchResult:
    """
    Outcome of a batch detail fetch.

    ``details`` holds successful payloads in input order; ``failures`` holds
    (id, error) for every id that did not make it.
    """
    details: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Tuple[str, BaseException]] = field(default_factory=list)

    @property
    def failed_ids(self) -> List[str]:
        return [listing_id for listing_id, _ in self.failures]


class UpstreamClient:
    """
    Client for the paginated listings catalog.

    Usage:
        client = UpstreamClient("https://api.example.org/catalogue/v1")
        summaries = client.fetch_listings(page=1, limit=20)
        detail = client.fetch_detail(summaries[0]["id"])
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        detail_concurrency: int = DEFAULT_DETAIL_CONCURRENCY,
        detail_batch_delay: float = DEFAULT_DETAIL_BATCH_DELAY,
        page_delay: float = DEFAULT_PAGE_DELAY,
        user_agent: str = "jobfeed/1.0",
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            base_url: API root, without trailing slash
            session: Shared requests session (one is created if omitted)
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt for retryable failures
            retry_base_delay: Backoff base in seconds; attempt n waits base * 2^n
            detail_concurrency: Default window size for batch_fetch_details
            detail_batch_delay: Pause between detail windows, in seconds
            page_delay: Pause between pages in fetch_multiple_pages, in seconds
            user_agent: User-Agent header sent with every request
            sleep: Sleep function, injectable for tests
        """
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._detail_concurrency = detail_concurrency
        self._detail_batch_delay = detail_batch_delay
        self._page_delay = page_delay
        self._sleep = sleep
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "application/json",
        }

    # =========================================================================
    # SINGLE REQUESTS
    # =========================================================================

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def _get_once(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        One GET, translated into the pipeline's error taxonomy.

        Returns:
            The decoded JSON body
        """
        try:
            response = self._session.get(
                url,
                params=params,
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"Request to {url} timed out after {self._timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(response.status_code, response.reason or "")

        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(f"Response from {url} is not JSON") from e

    def fetch_with_retry(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        expect: str = "object",
    ) -> Any:
        """
        GET ``url`` and return the envelope's ``data``, retrying transient failures.

        Timeouts, network errors, 5xx and 429 are retried up to max_retries
        times with exponential backoff. Other 4xx responses and malformed
        bodies fail immediately.

        Raises:
            UpstreamError: Non-retryable error status or error envelope
            ValidationError: Malformed response body
            RetryExhaustedError: A retryable failure outlasted every attempt
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._retry_base_delay, exp_base=2, min=0),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

        try:
            for attempt in retrying:
                with attempt:
                    return unwrap(self._get_once(url, params), expect)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error(f"API fetch failed for {url} after {attempts} attempts: {last_error}")
            raise RetryExhaustedError(last_error, attempts) from last_error

    def fetch_listings(self, page: int = 1, limit: int = 18) -> List[Dict[str, Any]]:
        """Fetch one page of listing summaries."""
        return self.fetch_with_retry(
            self._url(LISTINGS_PATH),
            params={"page": page, "limit": limit},
            expect="list",
        )

    def fetch_detail(self, listing_id: str) -> Dict[str, Any]:
        """Fetch the detail record for one listing."""
        if not listing_id:
            raise ValueError("Listing ID is required")
        return self.fetch_with_retry(
            self._url(LISTING_DETAIL_PATH.format(id=listing_id)),
            expect="object",
        )

    def fetch_employer_detail(self, employer_id: str) -> Dict[str, Any]:
        """Fetch the detail record for one employer."""
        if not employer_id:
            raise ValueError("Employer ID is required")
        return self.fetch_with_retry(
            self._url(EMPLOYER_DETAIL_PATH.format(id=employer_id)),
            expect="object",
        )

    # =========================================================================
    # BATCHES AND PAGES
    # =========================================================================

    def batch_fetch_details(
        self,
        listing_ids: Sequence[str],
        concurrency: Optional[int] = None,
    ) -> BatchFetchResult:
        """
        Fetch details for many listings in sequential windows.

        Each window of ``concurrency`` ids is fetched in parallel and awaited
        as a whole before the next one starts, with a short pause in between.
        Failures are collected per id; this method itself does not raise
        because some ids failed.
        """
        concurrency = max(1, concurrency or self._detail_concurrency)
        result = BatchFetchResult()
        if not listing_ids:
            return result

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="detail-fetch") as pool:
            for start in range(0, len(listing_ids), concurrency):
                window = list(listing_ids[start:start + concurrency])
                futures = [(listing_id, pool.submit(self.fetch_detail, listing_id)) for listing_id in window]

                for listing_id, future in futures:
                    try:
                        result.details.append(future.result())
                    except Exception as e:
                        result.failures.append((listing_id, e))

                if start + concurrency < len(listing_ids):
                    self._sleep(self._detail_batch_delay)

        if result.failures:
            logger.warning(
                f"Failed to fetch {len(result.failures)} of {len(listing_ids)} listing details: "
                f"{', '.join(str(i) for i in result.failed_ids)}"
            )

        return result

    def fetch_multiple_pages(self, max_pages: int = 3, per_page: int = 18) -> List[Dict[str, Any]]:
        """
        Walk listing pages from page 1.

        Stops after ``max_pages``, on a page shorter than ``per_page`` (the
        last page), or on the first page that fails.
        """
        all_listings: List[Dict[str, Any]] = []
        pages_fetched = 0

        for page in range(1, max_pages + 1):
            try:
                listings = self.fetch_listings(page, per_page)
            except Exception as e:
                logger.error(f"Failed to fetch page {page}: {e}")
                break

            all_listings.extend(listings)
            pages_fetched += 1

            if len(listings) < per_page:
                break

            if page < max_pages:
                self._sleep(self._page_delay)

        logger.info(f"Fetched {len(all_listings)} listings across {pages_fetched} page(s)")
        return all_listings

    def get_health_status(self) -> Dict[str, Any]:
        """Probe the listings endpoint with a one-item page."""
        started = time.monotonic()
        last_check = datetime.now(timezone.utc).isoformat()

        try:
            self.fetch_listings(1, 1)
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "response_time_ms": int((time.monotonic() - started) * 1000),
                "last_check": last_check,
            }

        return {
            "status": "healthy",
            "response_time_ms": int((time.monotonic() - started) * 1000),
            "last_check": last_check,
        }
