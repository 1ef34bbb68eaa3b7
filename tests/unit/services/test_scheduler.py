"""Unit tests for the periodic sync scheduler."""

import asyncio
from datetime import timedelta

import pytest

from order_sync_service.services.scheduler import SyncScheduler
from order_sync_service.services.sync_service import SyncService
from shared.constants import ORDER_LIST_PATH, TOKEN_REFRESH_PATH

from tests.fakes import SHOP_ID, TENANT_ID, FakeMarketplace


@pytest.fixture
def scheduler(sync_service: SyncService) -> SyncScheduler:
    return SyncScheduler(
        sync_service,
        ingestion_interval_seconds=3600,
        normalization_interval_seconds=300,
        max_concurrent_shops=2,
    )


class TestIngestionTick:
    @pytest.mark.asyncio
    async def test_no_connections(self, scheduler: SyncScheduler) -> None:
        report = await scheduler.run_ingestion_tick()
        assert report.units == []
        assert report.failed == 0

    @pytest.mark.asyncio
    async def test_failing_shop_does_not_block_others(
        self,
        scheduler: SyncScheduler,
        fake_marketplace: FakeMarketplace,
        make_connection,
        order_factory,
    ) -> None:
        fake_marketplace.add_order(order_factory("A"))
        await make_connection(shop_id=1)
        await make_connection(shop_id=2, expires_in=timedelta(minutes=1))
        fake_marketplace.queue(TOKEN_REFRESH_PATH, {"error": "error_auth", "message": "revoked"})

        report = await scheduler.run_ingestion_tick()

        by_shop = {unit.shop_id: unit for unit in report.units}
        assert by_shop[1].status == "succeeded"
        assert by_shop[1].ingestion is not None
        assert by_shop[1].ingestion.stored == 1
        assert by_shop[2].status == "failed"
        assert by_shop[2].error is not None
        assert by_shop[2].error["type"] == "IngestionError"
        assert by_shop[2].error["cause"]["code"] == "error_auth"
        assert report.stored == 1
        assert report.failed == 1
        assert report.errors[0]["shop_id"] == 2

    @pytest.mark.asyncio
    async def test_partial_when_a_batch_fails(
        self,
        scheduler: SyncScheduler,
        fake_marketplace: FakeMarketplace,
        make_connection,
        order_factory,
    ) -> None:
        for order_id in ("A", "B", "C"):
            fake_marketplace.add_order(order_factory(order_id))
        fake_marketplace.failing_order_ids = {"C"}
        await make_connection()

        report = await scheduler.run_ingestion_tick()

        assert report.units[0].status == "partial"
        assert report.stored == 2
        assert report.failed == 1

    @pytest.mark.asyncio
    async def test_shop_already_running_is_skipped(
        self,
        scheduler: SyncScheduler,
        sync_service: SyncService,
        fake_marketplace: FakeMarketplace,
        make_connection,
    ) -> None:
        await make_connection()

        async with sync_service.flight.acquire(("ingestion", TENANT_ID, SHOP_ID)) as acquired:
            assert acquired
            report = await scheduler.run_ingestion_tick()

        assert [unit.status for unit in report.units] == ["skipped"]
        assert fake_marketplace.calls(ORDER_LIST_PATH) == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_shops(
        self,
        scheduler: SyncScheduler,
        fake_marketplace: FakeMarketplace,
        make_connection,
    ) -> None:
        await make_connection(shop_id=1)
        await make_connection(shop_id=2)
        scheduler.request_shutdown()

        report = await scheduler.run_ingestion_tick()

        assert {unit.status for unit in report.units} == {"cancelled"}
        assert fake_marketplace.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(
        self,
        scheduler: SyncScheduler,
        sync_service: SyncService,
        make_connection,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await make_connection()

        async def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(sync_service, "ingest_shop", explode)

        report = await scheduler.run_ingestion_tick()

        assert report.units[0].status == "failed"
        assert report.units[0].error == {"type": "RuntimeError", "message": "boom"}


class TestNormalizationTick:
    @pytest.mark.asyncio
    async def test_one_unit_per_tenant(
        self,
        scheduler: SyncScheduler,
        make_connection,
    ) -> None:
        await make_connection(shop_id=1)
        await make_connection(shop_id=2)
        await make_connection(tenant_id="tenant-b", shop_id=3)

        report = await scheduler.run_normalization_tick()

        assert sorted(unit.tenant_id for unit in report.units) == [TENANT_ID, "tenant-b"]
        assert all(unit.status == "succeeded" for unit in report.units)


class TestRunForever:
    @pytest.mark.asyncio
    async def test_runs_both_timers_until_shutdown(
        self,
        scheduler: SyncScheduler,
        fake_marketplace: FakeMarketplace,
        make_connection,
    ) -> None:
        await make_connection()

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.05)
        scheduler.request_shutdown()
        await asyncio.wait_for(task, timeout=2)

        assert scheduler.stopping
        assert len(fake_marketplace.calls(ORDER_LIST_PATH)) == 1
