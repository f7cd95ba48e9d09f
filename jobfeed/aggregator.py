"""
Aggregation pipeline: listings -> enrichment -> filter -> sort.

Each stage finishes before the next starts. Enrichment fan-out is bounded
by the batch size; a listing whose detail cannot be fetched is kept as a
degraded record rather than dropped.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple
from concurrent.futures import ThreadPoolExecutor

from pydantic import ValidationError as PydanticValidationError

from jobfeed.cache import CacheKind, CacheManager
from jobfeed.errors import AggregationError
from jobfeed.models import EnrichedRecord, ListingDetail, ListingSummary
from jobfeed.upstream import UpstreamClient

logger = logging.getLogger("aggregator")

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY = 0.2


@dataclass
class AggregationReport:
    """Counts from one aggregation run, for logs and health pages."""
    max_records: int
    listed: int = 0
    enriched: int = 0
    degraded: int = 0
    dropped: int = 0
    returned: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "max_records": self.max_records,
            "listed": self.listed,
            "enriched": self.enriched,
            "degraded": self.degraded,
            "dropped": self.dropped,
            "returned": self.returned,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def listings_cache_key(max_records: int) -> str:
    return f"listings:{max_records}"


def detail_cache_key(listing_id: str) -> str:
    return f"detail:{listing_id}"


class Aggregator:
    """
    Turns a slice of the upstream catalog into enriched, sorted records.

    Usage:
        aggregator = Aggregator(cache_manager, client)
        records = aggregator.aggregate(20)
    """

    def __init__(
        self,
        cache: CacheManager,
        client: UpstreamClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            cache: Cache manager for listings and details
            client: Upstream API client
            batch_size: Listings enriched concurrently per window
            batch_delay: Pause between enrichment windows, in seconds
            sleep: Sleep function, injectable for tests
            clock: Current time, used for deadline countdowns
        """
        self._cache = cache
        self._client = client
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay
        self._sleep = sleep
        self._clock = clock

    def aggregate(self, max_records: int) -> List[EnrichedRecord]:
        """
        Produce at most ``max_records`` enriched records, newest first.

        Raises:
            AggregationError: If the listings could not be obtained
        """
        records, _ = self.aggregate_with_report(max_records)
        return records

    def aggregate_with_report(self, max_records: int) -> Tuple[List[EnrichedRecord], AggregationReport]:
        """Like aggregate, also returning per-stage counts."""
        started = time.monotonic()
        report = AggregationReport(max_records=max_records)
        logger.info(f"Starting aggregation for max {max_records} records")

        raw_listings = self._fetch_listings(max_records)
        report.listed = len(raw_listings)
        if not raw_listings:
            logger.warning("No listings found - the upstream returned an empty page")
            report.elapsed_seconds = time.monotonic() - started
            return [], report

        summaries = [s for s in map(self._parse_summary, raw_listings) if s is not None]
        unreadable = len(raw_listings) - len(summaries)
        if not summaries:
            logger.warning(f"All {len(raw_listings)} listings were unreadable")
            report.dropped = unreadable
            report.elapsed_seconds = time.monotonic() - started
            return [], report

        enriched = self._enrich(summaries)
        report.degraded = sum(1 for record in enriched if record.degraded)
        report.enriched = len(enriched) - report.degraded

        valid = self._filter(enriched)
        report.dropped = unreadable + len(enriched) - len(valid)

        records = self._sort(valid)
        report.returned = len(records)
        report.elapsed_seconds = time.monotonic() - started

        logger.info(
            f"Aggregated {report.returned} records "
            f"({report.enriched} enriched, {report.degraded} degraded, {report.dropped} dropped) "
            f"in {report.elapsed_seconds:.2f}s"
        )
        return records, report

    # =========================================================================
    # STAGES
    # =========================================================================

    def _fetch_listings(self, max_records: int) -> List[Any]:
        """Raw listing entries, at most ``max_records`` of them."""
        try:
            raw_listings = self._cache.get_or_set(
                listings_cache_key(max_records),
                CacheKind.LISTINGS,
                lambda: self._client.fetch_listings(1, max_records),
            )
        except Exception as e:
            logger.error(f"Listings fetch failed: {e}")
            raise AggregationError(f"Failed to aggregate job data: {e}") from e

        if not isinstance(raw_listings, list):
            raise AggregationError(
                f"Failed to aggregate job data: listings payload is {type(raw_listings).__name__}, not a list"
            )

        return raw_listings[:max_records]

    @staticmethod
    def _parse_summary(raw: Any) -> Optional[ListingSummary]:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping listing that is not an object: {raw!r}")
            return None
        try:
            return ListingSummary.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Skipping unreadable listing {raw.get('id')!r}: {e.error_count()} error(s)")
            return None

    def _enrich(self, summaries: Sequence[ListingSummary]) -> List[EnrichedRecord]:
        """Enrich in windows of batch_size; output keeps input order."""
        enriched: List[EnrichedRecord] = []
        total_windows = (len(summaries) + self._batch_size - 1) // self._batch_size

        with ThreadPoolExecutor(max_workers=self._batch_size, thread_name_prefix="enrich") as pool:
            for start in range(0, len(summaries), self._batch_size):
                window = summaries[start:start + self._batch_size]
                logger.debug(
                    f"Processing batch {start // self._batch_size + 1}/{total_windows} "
                    f"with {len(window)} listings"
                )
                enriched.extend(pool.map(self._enrich_one, window))

                if start + self._batch_size < len(summaries):
                    self._sleep(self._batch_delay)

        return enriched

    def _enrich_one(self, summary: ListingSummary) -> EnrichedRecord:
        """Merge one summary with its detail, degrading on any failure."""
        if not summary.id:
            return EnrichedRecord.degraded_from(summary)

        try:
            raw_detail = self._cache.get_or_set(
                detail_cache_key(summary.id),
                CacheKind.DETAILS,
                lambda: self._client.fetch_detail(summary.id),
            )
            detail = ListingDetail.model_validate(raw_detail)
            return EnrichedRecord.enriched(summary, detail, now=self._clock())
        except Exception as e:
            logger.warning(f"Failed to enrich listing {summary.id}: {e} - using summary only")
            return EnrichedRecord.degraded_from(summary)

    @staticmethod
    def _filter(records: Sequence[EnrichedRecord]) -> List[EnrichedRecord]:
        """Drop records that cannot be rendered downstream."""
        valid = []
        for index, record in enumerate(records):
            missing = record.summary.missing_fields()
            if missing:
                logger.warning(
                    f"Listing {index} ({record.id!r}) filtered out, missing: {', '.join(missing)}"
                )
                continue
            valid.append(record)
        return valid

    @staticmethod
    def _sort(records: Sequence[EnrichedRecord]) -> List[EnrichedRecord]:
        """Newest first; equal timestamps keep their relative order."""
        return sorted(records, key=lambda record: record.posted_at, reverse=True)
