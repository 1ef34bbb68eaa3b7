#!/usr/bin/env python3
"""CLI script to ingest and normalize orders for one tenant outside the scheduler."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from order_sync_service.config import get_settings
from order_sync_service.container import sync_service_context
from order_sync_service.logging_config import configure_logging

logger = structlog.get_logger()


async def main(tenant_id: str, shop_id: int | None, status: str | None, skip_normalize: bool) -> int:
    """Run one ingestion (and normalization) pass; exit code 1 if any unit failed."""
    logger.info("Starting order sync", tenant_id=tenant_id, shop_id=shop_id)

    async with sync_service_context() as sync_service:
        ingestion = await sync_service.trigger_ingestion(tenant_id, shop_id, status_filter=status)
        logger.info(
            "Ingestion completed",
            fetched=ingestion.fetched,
            stored=ingestion.stored,
            failed=ingestion.failed,
            errors=ingestion.errors,
        )
        failed = ingestion.failed

        if not skip_normalize:
            normalization = await sync_service.trigger_normalization(tenant_id)
            logger.info(
                "Normalization completed",
                normalized=normalization.normalized,
                failed=normalization.failed,
                errors=normalization.errors,
            )
            failed += normalization.failed

    logger.info("All operations completed", failed=failed)
    return 1 if failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync marketplace orders for one tenant")
    parser.add_argument("tenant_id")
    parser.add_argument("--shop-id", type=int, default=None, help="Only this shop (default: all active)")
    parser.add_argument("--status", default=None, help="Marketplace order_status filter")
    parser.add_argument("--skip-normalize", action="store_true")
    args = parser.parse_args()

    configure_logging(get_settings())
    sys.exit(asyncio.run(main(args.tenant_id, args.shop_id, args.status, args.skip_normalize)))
