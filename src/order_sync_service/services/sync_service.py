"""Trigger interface into the sync core.

The web layer and the scheduler only ever call the methods on ``SyncService``.
It owns the per-key single-flight guard, so a manual trigger and a scheduled
tick never run the same shop (or tenant, for normalization) concurrently, and it
converts per-shop failures into report entries instead of exceptions.
"""

from collections.abc import AsyncIterator, Callable, Hashable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog

from order_sync_service.errors import OrderSyncError
from order_sync_service.schemas import RunReport, ShopRunReport
from order_sync_service.services.normalization import NormalizationEngine
from order_sync_service.services.order_ingestion import OrderIngestionPipeline, TimeWindow
from order_sync_service.services.token_manager import TokenLifecycleManager
from order_sync_service.services.token_store import ConnectionRecord, TokenStore
from shared.time_utils import utcnow

logger = structlog.get_logger()


class SingleFlight:
    """In-process guard allowing one holder per key; others are turned away."""

    def __init__(self) -> None:
        self._running: set[Hashable] = set()

    def is_running(self, key: Hashable) -> bool:
        return key in self._running

    @asynccontextmanager
    async def acquire(self, key: Hashable) -> AsyncIterator[bool]:
        if key in self._running:
            yield False
            return
        self._running.add(key)
        try:
            yield True
        finally:
            self._running.discard(key)


def error_summary(error: BaseException) -> dict[str, Any]:
    """Summary of an error, preferring the underlying cause of wrapper errors."""
    summary = error.to_summary() if isinstance(error, OrderSyncError) else {
        "type": type(error).__name__,
        "message": str(error),
    }
    cause = error.__cause__
    if isinstance(cause, OrderSyncError):
        summary["cause"] = cause.to_summary()
    return summary


class SyncService:
    """Entry points: authorize a shop, trigger ingestion, trigger normalization."""

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        token_store: TokenStore,
        ingestion: OrderIngestionPipeline,
        normalization: NormalizationEngine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.token_manager = token_manager
        self.token_store = token_store
        self.ingestion = ingestion
        self.normalization = normalization
        self.flight = SingleFlight()
        self._clock = clock

    async def complete_authorization(
        self, tenant_id: str, shop_id: int, code: str
    ) -> ConnectionRecord:
        return await self.token_manager.complete_authorization(tenant_id, shop_id, code)

    async def active_connections(self, tenant_id: str | None = None) -> list[ConnectionRecord]:
        return await self.token_store.list_active(tenant_id)

    async def trigger_ingestion(
        self,
        tenant_id: str,
        shop_id: int | None = None,
        status_filter: str | None = None,
        window: TimeWindow | None = None,
    ) -> RunReport:
        """Ingest one shop, or every active shop of the tenant when shop_id is None."""
        report = RunReport(kind="ingestion", started_at=self._clock())
        if shop_id is not None:
            shop_ids = [shop_id]
        else:
            shop_ids = [c.shop_id for c in await self.active_connections(tenant_id)]

        for sid in shop_ids:
            report.add(await self.ingest_shop(tenant_id, sid, status_filter, window))
        report.finished_at = self._clock()
        return report

    async def trigger_normalization(self, tenant_id: str) -> RunReport:
        report = RunReport(kind="normalization", started_at=self._clock())
        report.add(await self.normalize_tenant(tenant_id))
        report.finished_at = self._clock()
        return report

    async def ingest_shop(
        self,
        tenant_id: str,
        shop_id: int,
        status_filter: str | None = None,
        window: TimeWindow | None = None,
    ) -> ShopRunReport:
        """Run ingestion for one shop, never raising for shop-level failures."""
        log = logger.bind(tenant_id=tenant_id, shop_id=shop_id)
        async with self.flight.acquire(("ingestion", tenant_id, shop_id)) as acquired:
            if not acquired:
                log.info("Ingestion already running for shop, skipping")
                return ShopRunReport(tenant_id=tenant_id, shop_id=shop_id, status="skipped")
            try:
                result = await self.ingestion.ingest(tenant_id, shop_id, status_filter, window)
            except OrderSyncError as e:
                log.error("Ingestion failed", error=str(e))
                return ShopRunReport(
                    tenant_id=tenant_id, shop_id=shop_id, status="failed", error=error_summary(e)
                )
            except Exception as e:
                log.exception("Unexpected ingestion error")
                return ShopRunReport(
                    tenant_id=tenant_id, shop_id=shop_id, status="failed", error=error_summary(e)
                )

        return ShopRunReport(
            tenant_id=tenant_id,
            shop_id=shop_id,
            status="partial" if result.failed_batches else "succeeded",
            ingestion=result,
        )

    async def normalize_tenant(self, tenant_id: str) -> ShopRunReport:
        """Run normalization for one tenant, never raising for tenant-level failures."""
        log = logger.bind(tenant_id=tenant_id)
        async with self.flight.acquire(("normalization", tenant_id)) as acquired:
            if not acquired:
                log.info("Normalization already running for tenant, skipping")
                return ShopRunReport(tenant_id=tenant_id, status="skipped")
            try:
                result = await self.normalization.normalize(tenant_id)
            except OrderSyncError as e:
                log.error("Normalization failed", error=str(e))
                return ShopRunReport(tenant_id=tenant_id, status="failed", error=error_summary(e))
            except Exception as e:
                log.exception("Unexpected normalization error")
                return ShopRunReport(tenant_id=tenant_id, status="failed", error=error_summary(e))

        return ShopRunReport(
            tenant_id=tenant_id,
            status="partial" if result.failed else "succeeded",
            normalization=result,
        )
