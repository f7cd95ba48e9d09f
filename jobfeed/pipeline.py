"""
Wiring: build the cache manager, upstream client and aggregator from settings.

Callers (HTTP handlers, schedulers) construct one pipeline at startup and
pass it around; nothing here is a module-level singleton.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

from config.settings import Settings, settings as default_settings
from jobfeed.aggregator import Aggregator
from jobfeed.cache import (
    CacheManager,
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    build_ttl_table,
)
from jobfeed.models import EnrichedRecord
from jobfeed.upstream import UpstreamClient

logger = logging.getLogger("pipeline")


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup for processes that run the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_store(settings: Settings) -> CacheStore:
    """Redis when a URL is configured, otherwise a process-local store."""
    if settings.redis_url:
        logger.info("Using Redis cache store")
        return RedisCacheStore.from_url(settings.redis_url)
    logger.info("No REDIS_URL configured - using in-memory cache store")
    return InMemoryCacheStore()


def create_cache_manager(settings: Settings, store: Optional[CacheStore] = None) -> CacheManager:
    return CacheManager(
        store=store if store is not None else create_store(settings),
        environment=settings.environment,
        ttl_table=build_ttl_table(settings.cache_ttl_seconds),
        default_ttl=settings.cache_default_ttl_seconds,
        single_flight=settings.cache_single_flight,
        default_swr_seconds=settings.cache_swr_seconds,
    )


def create_client(settings: Settings, session: Optional[requests.Session] = None) -> UpstreamClient:
    return UpstreamClient(
        base_url=settings.upstream_base_url,
        session=session,
        timeout=settings.request_timeout_ms / 1000,
        max_retries=settings.max_retries,
        retry_base_delay=settings.retry_base_delay_ms / 1000,
        detail_concurrency=settings.detail_concurrency,
        detail_batch_delay=settings.detail_batch_delay_ms / 1000,
        page_delay=settings.page_delay_ms / 1000,
        user_agent=settings.user_agent,
    )


@dataclass
class Pipeline:
    """The wired object graph for one process."""
    settings: Settings
    cache: CacheManager
    client: UpstreamClient
    aggregator: Aggregator

    def run(self, max_records: Optional[int] = None) -> List[EnrichedRecord]:
        if max_records is None:
            max_records = self.settings.max_records
        return self.aggregator.aggregate(max_records)

    def close(self) -> None:
        self.cache.close()


def create_pipeline(
    settings: Optional[Settings] = None,
    store: Optional[CacheStore] = None,
    session: Optional[requests.Session] = None,
) -> Pipeline:
    """
    Build a pipeline.

    Args:
        settings: Defaults to the settings loaded from the environment
        store: Cache store override (tests, custom backends)
        session: requests session override
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)
    cache = create_cache_manager(settings, store)
    client = create_client(settings, session)
    aggregator = Aggregator(
        cache,
        client,
        batch_size=settings.enrichment_batch_size,
        batch_delay=settings.batch_delay_ms / 1000,
    )
    return Pipeline(settings=settings, cache=cache, client=client, aggregator=aggregator)
