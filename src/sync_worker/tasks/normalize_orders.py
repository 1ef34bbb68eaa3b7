"""Order normalization tasks."""

import structlog
from celery import shared_task

from order_sync_service.errors import PersistenceError
from sync_worker.runner import run_locked

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def normalize_all_tenants(self) -> dict:
    """
    Normalize unprocessed raw orders for every tenant with an active connection.

    Returns:
        dict: The run report
    """
    logger.info("Starting scheduled order normalization")
    try:
        return run_locked(
            "normalization",
            lambda service, scheduler: scheduler.run_normalization_tick(),
        )
    except PersistenceError as e:
        logger.error("Could not list connections, retrying", error=str(e))
        raise self.retry(exc=e)


@shared_task
def normalize_tenant(tenant_id: str) -> dict:
    """
    Normalize unprocessed raw orders of one tenant.

    Tenant-level failures come back as a failed unit in the report, so this
    task is not retried.
    """
    logger.info("Starting manual order normalization", tenant_id=tenant_id)
    return run_locked(
        f"normalization:{tenant_id}",
        lambda service, scheduler: service.trigger_normalization(tenant_id),
    )
