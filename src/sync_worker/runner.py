"""Runs one async sync operation inside a Celery task."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from order_sync_service.config import get_settings
from order_sync_service.container import build_scheduler, sync_service_context
from order_sync_service.infrastructure.redis import LockService, close_redis, get_redis_client
from order_sync_service.schemas import RunReport
from order_sync_service.services.scheduler import SyncScheduler
from order_sync_service.services.sync_service import SyncService

logger = structlog.get_logger()

Work = Callable[[SyncService, SyncScheduler], Awaitable[RunReport]]


async def _run_locked(lock_name: str, work: Work) -> dict[str, Any]:
    settings = get_settings()
    locks = LockService(await get_redis_client())
    try:
        async with locks.hold(lock_name, settings.sync_lock_ttl_seconds) as acquired:
            if not acquired:
                logger.info("Sync already running in another worker, skipping", lock=lock_name)
                return {"skipped": True, "lock": lock_name}
            async with sync_service_context(settings) as service:
                report = await work(service, build_scheduler(settings, service))
    finally:
        await close_redis()

    return report.model_dump(mode="json")


def run_locked(lock_name: str, work: Work) -> dict[str, Any]:
    """Execute ``work`` under a cross-worker lock in a fresh event loop."""
    return asyncio.run(_run_locked(lock_name, work))
