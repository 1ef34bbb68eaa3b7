"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio

from order_sync_service.config import MarketplaceConfig, Settings
from order_sync_service.services.marketplace_client import MarketplaceClient
from order_sync_service.services.normalization import NormalizationEngine
from order_sync_service.services.order_ingestion import OrderIngestionPipeline
from order_sync_service.services.sync_service import SyncService
from order_sync_service.services.token_manager import TokenLifecycleManager
from order_sync_service.services.token_store import ConnectionRecord, TokenStore
from tests.fakes import SHOP_ID, TENANT_ID, FakeClock, FakeMarketplace, InMemoryStore, no_sleep


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        marketplace_partner_id=2001887,
        marketplace_partner_key="test-partner-key",
        marketplace_api_host="https://partner.test",
        marketplace_redirect_url="https://app.test/marketplace/callback",
        marketplace_max_retries=2,
        marketplace_retry_backoff_seconds=0.01,
        postgres_host="localhost",
        postgres_user="test",
        postgres_password="test",
        postgres_db="test_db",
    )


@pytest.fixture
def marketplace_config(test_settings: Settings) -> MarketplaceConfig:
    return test_settings.marketplace_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest_asyncio.fixture
async def http_client(fake_marketplace: FakeMarketplace) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_marketplace)) as client:
        yield client


@pytest.fixture
def marketplace_client(
    marketplace_config: MarketplaceConfig, http_client: httpx.AsyncClient, clock: FakeClock
) -> MarketplaceClient:
    return MarketplaceClient(
        marketplace_config,
        http_client,
        clock=lambda: clock().timestamp(),
        sleep=no_sleep,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def token_store(store: InMemoryStore) -> TokenStore:
    return TokenStore(store)


@pytest.fixture
def token_manager(
    marketplace_config: MarketplaceConfig,
    marketplace_client: MarketplaceClient,
    token_store: TokenStore,
    clock: FakeClock,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(marketplace_config, marketplace_client, token_store, clock=clock)


@pytest.fixture
def make_connection(
    token_store: TokenStore, clock: FakeClock
) -> Callable[..., Any]:
    """Factory that persists a connection whose token expires after ``expires_in``."""

    async def make(
        tenant_id: str = TENANT_ID,
        shop_id: int = SHOP_ID,
        expires_in: timedelta = timedelta(hours=4),
        access_token: str = "access-0",
        refresh_token: str = "refresh-0",
    ) -> ConnectionRecord:
        connection = ConnectionRecord(
            tenant_id=tenant_id,
            shop_id=shop_id,
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=clock() + expires_in,
            updated_at=clock(),
        )
        await token_store.save(connection)
        return connection

    return make


@pytest.fixture
def pipeline(
    marketplace_client: MarketplaceClient,
    token_manager: TokenLifecycleManager,
    store: InMemoryStore,
    clock: FakeClock,
) -> OrderIngestionPipeline:
    return OrderIngestionPipeline(
        marketplace_client,
        token_manager,
        store,
        page_size=2,
        detail_batch_size=2,
        optional_fields="buyer_username,pay_time,total_amount",
        clock=clock,
    )


@pytest.fixture
def normalization_engine(store: InMemoryStore) -> NormalizationEngine:
    return NormalizationEngine(store, batch_size=2)


@pytest.fixture
def sync_service(
    token_manager: TokenLifecycleManager,
    token_store: TokenStore,
    pipeline: OrderIngestionPipeline,
    normalization_engine: NormalizationEngine,
    clock: FakeClock,
) -> SyncService:
    return SyncService(token_manager, token_store, pipeline, normalization_engine, clock=clock)


@pytest.fixture
def order_factory() -> Callable[..., dict[str, Any]]:
    """Build a marketplace order detail payload."""

    def make(order_sn: str, **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "order_sn": order_sn,
            "order_status": "READY_TO_SHIP",
            "currency": "BRL",
            "total_amount": 99.9,
            "shipping_fee": 9.9,
            "actual_shipping_fee": 9.9,
            "estimated_shipping_fee": 11.0,
            "create_time": 1710000000,
            "update_time": 1710003600,
            "ship_by_date": 1710259200,
            "buyer_username": "buyer_one",
            "shipping_carrier": "Correios",
            "payment_info": {
                "payment_method": "Pix",
                "paid_amount": "99.90",
                "pay_time": 1710000300,
            },
            "recipient_address": {
                "name": "Ana Souza",
                "phone": "5511999990000",
                "full_address": "Rua A, 10, Sao Paulo",
                "city": "Sao Paulo",
                "state": "SP",
                "district": "Centro",
                "zipcode": "01000-000",
                "region": "BR",
            },
        }
        payload.update(overrides)
        return payload

    return make
