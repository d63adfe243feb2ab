from functools import lru_cache

from fastapi import Depends

from family_crawl.core.config import Settings, get_settings
from family_crawl.services.gateway import FirecrawlGateway
from family_crawl.services.orchestrator import CrawlOrchestrator
from family_crawl.services.reconciler import RefreshReconciler
from family_crawl.services.repository import CrawlRepository, PostgresRepository
from family_crawl.services.store import InMemoryRepository


@lru_cache
def get_repository() -> CrawlRepository:
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )


@lru_cache
def get_gateway() -> FirecrawlGateway:
    settings = get_settings()
    return FirecrawlGateway(
        api_key=settings.firecrawl_api_key,
        mode=settings.extraction_mode,
        sync_endpoint=settings.firecrawl_extract_url_sync,
        async_endpoint=settings.firecrawl_extract_url_async,
        timeout_seconds=settings.extraction_timeout_seconds,
    )


def get_orchestrator(
    repository: CrawlRepository = Depends(get_repository),
    gateway: FirecrawlGateway = Depends(get_gateway),
) -> CrawlOrchestrator:
    return CrawlOrchestrator(repository=repository, gateway=gateway)


def get_reconciler(
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> RefreshReconciler:
    return RefreshReconciler(
        orchestrator,
        batch_size=settings.refresh_batch_size,
        concurrency=settings.refresh_concurrency,
    )
