"""Periodic ingestion and normalization timers.

Two independent loops share one shutdown event. Each tick fans out over the
active connections (ingestion) or their tenants (normalization) with bounded
concurrency. Once shutdown is requested no new shop is started; work already
in progress finishes its current step.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from order_sync_service.schemas import RunReport, ShopRunReport
from order_sync_service.services.sync_service import SyncService, error_summary
from shared.time_utils import utcnow

logger = structlog.get_logger()

Unit = tuple[str, int | None]


class SyncScheduler:
    """Drives SyncService on fixed intervals."""

    def __init__(
        self,
        sync_service: SyncService,
        *,
        ingestion_interval_seconds: float = 3600,
        normalization_interval_seconds: float = 300,
        max_concurrent_shops: int = 4,
    ):
        self.sync_service = sync_service
        self.ingestion_interval = ingestion_interval_seconds
        self.normalization_interval = normalization_interval_seconds
        self.max_concurrent_shops = max(1, max_concurrent_shops)
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("Scheduler shutdown requested")
        self._stop.set()

    async def run_ingestion_tick(self) -> RunReport:
        """Ingest every active connection once."""
        connections = await self.sync_service.active_connections()
        units: list[Unit] = [(c.tenant_id, c.shop_id) for c in connections]
        return await self._run_units(
            "ingestion",
            units,
            lambda tenant_id, shop_id: self.sync_service.ingest_shop(tenant_id, shop_id),
        )

    async def run_normalization_tick(self) -> RunReport:
        """Normalize every tenant that has at least one active connection."""
        connections = await self.sync_service.active_connections()
        tenants = sorted({c.tenant_id for c in connections})
        units: list[Unit] = [(tenant_id, None) for tenant_id in tenants]
        return await self._run_units(
            "normalization",
            units,
            lambda tenant_id, _shop_id: self.sync_service.normalize_tenant(tenant_id),
        )

    async def _run_units(
        self,
        kind: str,
        units: list[Unit],
        work: Callable[[str, int | None], Awaitable[ShopRunReport]],
    ) -> RunReport:
        report = RunReport(kind=kind, started_at=utcnow())
        semaphore = asyncio.Semaphore(self.max_concurrent_shops)

        async def run_one(tenant_id: str, shop_id: int | None) -> ShopRunReport:
            async with semaphore:
                if self._stop.is_set():
                    return ShopRunReport(tenant_id=tenant_id, shop_id=shop_id, status="cancelled")
                return await work(tenant_id, shop_id)

        outcomes = await asyncio.gather(
            *(run_one(tenant_id, shop_id) for tenant_id, shop_id in units),
            return_exceptions=True,
        )
        for (tenant_id, shop_id), outcome in zip(units, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Unhandled error in scheduler unit",
                    kind=kind,
                    tenant_id=tenant_id,
                    shop_id=shop_id,
                    error=str(outcome),
                )
                outcome = ShopRunReport(
                    tenant_id=tenant_id,
                    shop_id=shop_id,
                    status="failed",
                    error=error_summary(outcome),
                )
            report.add(outcome)

        report.finished_at = utcnow()
        logger.info(
            "Scheduler tick finished",
            kind=kind,
            units=len(units),
            fetched=report.fetched,
            stored=report.stored,
            normalized=report.normalized,
            failed=report.failed,
        )
        return report

    async def _timer(
        self, name: str, tick: Callable[[], Awaitable[RunReport]], interval: float
    ) -> None:
        logger.info("Timer started", timer=name, interval_seconds=interval)
        while not self._stop.is_set():
            try:
                await tick()
            except Exception:
                logger.exception("Scheduler tick failed", timer=name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Timer stopped", timer=name)

    async def run_forever(self) -> None:
        """Run both timers until ``request_shutdown`` is called."""
        await asyncio.gather(
            self._timer("ingestion", self.run_ingestion_tick, self.ingestion_interval),
            self._timer("normalization", self.run_normalization_tick, self.normalization_interval),
        )
