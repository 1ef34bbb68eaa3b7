"""Wiring of the sync components from one Settings instance."""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import httpx

from order_sync_service.config import Settings, get_settings
from order_sync_service.infrastructure.database.connection import get_async_engine
from order_sync_service.infrastructure.database.store import KeyedStore, SqlAlchemyStore
from order_sync_service.services.marketplace_client import MarketplaceClient
from order_sync_service.services.normalization import NormalizationEngine
from order_sync_service.services.order_ingestion import OrderIngestionPipeline
from order_sync_service.services.scheduler import SyncScheduler
from order_sync_service.services.signature import SignatureEngine
from order_sync_service.services.sync_service import SyncService
from order_sync_service.services.token_manager import TokenLifecycleManager
from order_sync_service.services.token_store import TokenStore
from shared.time_utils import utcnow


def build_sync_service(
    settings: Settings,
    store: KeyedStore,
    http_client: httpx.AsyncClient,
    clock: Callable[[], datetime] = utcnow,
) -> SyncService:
    """Assemble the component graph. Raises ConfigurationError on bad secrets."""
    config = settings.marketplace_config()
    signer = SignatureEngine(config.partner_key)
    client = MarketplaceClient(
        config,
        http_client,
        signer=signer,
        clock=lambda: clock().timestamp(),
    )
    token_store = TokenStore(store)
    token_manager = TokenLifecycleManager(config, client, token_store, clock=clock)
    ingestion = OrderIngestionPipeline(
        client,
        token_manager,
        store,
        page_size=settings.order_list_page_size,
        detail_batch_size=settings.order_detail_batch_size,
        lookback_days=settings.lookback_days,
        cursor_overlap_minutes=settings.cursor_overlap_minutes,
        time_range_field=settings.time_range_field,
        optional_fields=settings.order_detail_optional_fields,
        clock=clock,
    )
    normalization = NormalizationEngine(store, batch_size=settings.normalization_batch_size)
    return SyncService(token_manager, token_store, ingestion, normalization, clock=clock)


def build_scheduler(settings: Settings, sync_service: SyncService) -> SyncScheduler:
    return SyncScheduler(
        sync_service,
        ingestion_interval_seconds=settings.ingestion_interval_minutes * 60,
        normalization_interval_seconds=settings.normalization_interval_minutes * 60,
        max_concurrent_shops=settings.max_concurrent_shops,
    )


@asynccontextmanager
async def sync_service_context(settings: Settings | None = None) -> AsyncIterator[SyncService]:
    """SyncService backed by PostgreSQL and a pooled HTTP client, closed on exit."""
    settings = settings or get_settings()
    config = settings.marketplace_config()
    engine = get_async_engine(settings)
    try:
        async with httpx.AsyncClient(timeout=config.timeout_seconds) as http_client:
            yield build_sync_service(settings, SqlAlchemyStore(engine), http_client)
    finally:
        await engine.dispose()
