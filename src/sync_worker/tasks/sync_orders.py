"""Order ingestion tasks."""

import structlog
from celery import shared_task

from order_sync_service.errors import PersistenceError
from sync_worker.runner import run_locked

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def ingest_all_shops(self) -> dict:
    """
    Ingest recent orders for every active shop connection.

    This task:
    1. Takes the cluster-wide ingestion lock (skips if another worker holds it)
    2. Lists active connections
    3. Pulls orders since each shop's sync cursor into raw storage

    Returns:
        dict: The run report
    """
    logger.info("Starting scheduled order ingestion")
    try:
        return run_locked(
            "ingestion",
            lambda service, scheduler: scheduler.run_ingestion_tick(),
        )
    except PersistenceError as e:
        logger.error("Could not list connections, retrying", error=str(e))
        raise self.retry(exc=e)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def ingest_shop(self, tenant_id: str, shop_id: int | None = None) -> dict:
    """
    Ingest orders for one shop, or for all active shops of a tenant.

    Args:
        tenant_id: Tenant owning the connection
        shop_id: Marketplace shop id; None means every active shop of the tenant

    Returns:
        dict: The run report
    """
    logger.info("Starting manual order ingestion", tenant_id=tenant_id, shop_id=shop_id)
    lock_name = f"ingestion:{tenant_id}:{shop_id if shop_id is not None else '*'}"
    try:
        return run_locked(
            lock_name,
            lambda service, scheduler: service.trigger_ingestion(tenant_id, shop_id),
        )
    except PersistenceError as e:
        logger.error("Could not list connections, retrying", tenant_id=tenant_id, error=str(e))
        raise self.retry(exc=e)
