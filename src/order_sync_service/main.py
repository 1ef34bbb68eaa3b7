"""In-process scheduler entry point."""

import asyncio
import signal

import structlog

from order_sync_service import __version__
from order_sync_service.config import get_settings
from order_sync_service.container import build_scheduler, sync_service_context
from order_sync_service.logging_config import configure_logging

logger = structlog.get_logger()


async def serve() -> None:
    """Run both timers until SIGINT/SIGTERM."""
    settings = get_settings()
    logger.info(
        "Starting marketplace order sync",
        version=__version__,
        app_env=settings.app_env,
        ingestion_interval_minutes=settings.ingestion_interval_minutes,
        normalization_interval_minutes=settings.normalization_interval_minutes,
    )

    async with sync_service_context(settings) as sync_service:
        scheduler = build_scheduler(settings, sync_service)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.request_shutdown)
        await scheduler.run_forever()

    logger.info("Shutting down marketplace order sync")


def run() -> None:
    """Console script entry point."""
    configure_logging(get_settings())
    asyncio.run(serve())


if __name__ == "__main__":
    run()
