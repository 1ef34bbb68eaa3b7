"""Unit tests for the trigger interface."""

import asyncio
from datetime import timedelta

import pytest

from order_sync_service.errors import TokenRefreshError
from order_sync_service.services.sync_service import SingleFlight, SyncService
from shared.constants import (
    NORMALIZED_ORDERS_TABLE,
    ORDER_LIST_PATH,
    RAW_ORDERS_TABLE,
    TOKEN_GET_PATH,
)

from tests.fakes import SHOP_ID, TENANT_ID, FakeMarketplace, InMemoryStore


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_holder_is_turned_away(self) -> None:
        flight = SingleFlight()
        async with flight.acquire("k") as first:
            async with flight.acquire("k") as second:
                assert first is True
                assert second is False
            assert flight.is_running("k")
        assert not flight.is_running("k")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        flight = SingleFlight()
        async with flight.acquire("a") as a, flight.acquire("b") as b:
            assert a and b


class TestTriggers:
    @pytest.mark.asyncio
    async def test_authorize_ingest_normalize(
        self,
        sync_service: SyncService,
        fake_marketplace: FakeMarketplace,
        store: InMemoryStore,
        order_factory,
    ) -> None:
        for order_id in ("A", "B", "C"):
            fake_marketplace.add_order(order_factory(order_id))

        connection = await sync_service.complete_authorization(TENANT_ID, SHOP_ID, "code-1")
        ingestion = await sync_service.trigger_ingestion(TENANT_ID, SHOP_ID)
        normalization = await sync_service.trigger_normalization(TENANT_ID)

        assert connection.is_active
        assert ingestion.kind == "ingestion"
        assert (ingestion.fetched, ingestion.stored, ingestion.failed) == (3, 3, 0)
        assert ingestion.finished_at is not None
        assert normalization.normalized == 3
        assert len(store.rows(NORMALIZED_ORDERS_TABLE)) == 3
        assert all(row["is_processed"] for row in store.rows(RAW_ORDERS_TABLE))

    @pytest.mark.asyncio
    async def test_tenant_wide_ingestion_covers_active_shops(
        self,
        sync_service: SyncService,
        fake_marketplace: FakeMarketplace,
        make_connection,
    ) -> None:
        await make_connection(shop_id=1)
        await make_connection(shop_id=2)
        await make_connection(shop_id=3)
        await make_connection(tenant_id="tenant-b", shop_id=4)
        await sync_service.token_manager.disable_connection(TENANT_ID, 3)

        report = await sync_service.trigger_ingestion(TENANT_ID)

        assert [unit.shop_id for unit in report.units] == [1, 2]
        shop_ids = {c.url.params["shop_id"] for c in fake_marketplace.calls(ORDER_LIST_PATH)}
        assert shop_ids == {"1", "2"}

    @pytest.mark.asyncio
    async def test_unknown_shop_is_reported_not_raised(self, sync_service: SyncService) -> None:
        report = await sync_service.trigger_ingestion(TENANT_ID, 999)

        assert report.units[0].status == "failed"
        assert report.failed == 1
        assert report.errors[0]["cause"]["type"] == "ConnectionNotFoundError"

    @pytest.mark.asyncio
    async def test_authorization_failure_propagates(
        self, sync_service: SyncService, fake_marketplace: FakeMarketplace
    ) -> None:
        fake_marketplace.queue(TOKEN_GET_PATH, {"error": "error_param", "message": "used code"})

        with pytest.raises(TokenRefreshError):
            await sync_service.complete_authorization(TENANT_ID, SHOP_ID, "code-used")

    @pytest.mark.asyncio
    async def test_concurrent_trigger_for_same_shop_is_skipped(
        self,
        sync_service: SyncService,
        fake_marketplace: FakeMarketplace,
        make_connection,
    ) -> None:
        # the first trigger suspends inside a slow token refresh
        await make_connection(expires_in=timedelta(minutes=1))
        fake_marketplace.refresh_delay = 0.05

        first, second = await asyncio.gather(
            sync_service.trigger_ingestion(TENANT_ID, SHOP_ID),
            sync_service.trigger_ingestion(TENANT_ID, SHOP_ID),
        )

        assert first.units[0].status == "succeeded"
        assert second.units[0].status == "skipped"
        assert len(fake_marketplace.calls(ORDER_LIST_PATH)) == 1
