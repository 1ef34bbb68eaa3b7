"""Sync core services."""

from order_sync_service.services.marketplace_client import MarketplaceClient
from order_sync_service.services.normalization import NormalizationEngine
from order_sync_service.services.order_ingestion import OrderIngestionPipeline, TimeWindow
from order_sync_service.services.scheduler import SyncScheduler
from order_sync_service.services.signature import SignatureEngine
from order_sync_service.services.sync_service import SyncService
from order_sync_service.services.token_manager import TokenLifecycleManager
from order_sync_service.services.token_store import TokenStore

__all__ = [
    "MarketplaceClient",
    "NormalizationEngine",
    "OrderIngestionPipeline",
    "TimeWindow",
    "SyncScheduler",
    "SignatureEngine",
    "SyncService",
    "TokenLifecycleManager",
    "TokenStore",
]
