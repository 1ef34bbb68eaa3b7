#!/usr/bin/env python3
"""CLI script to authorize a shop: print the seller link, then exchange the returned code."""

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
from shared.time_utils import format_instant

logger = structlog.get_logger()


async def main(args: argparse.Namespace) -> None:
    async with sync_service_context() as sync_service:
        if args.code is None:
            print(sync_service.token_manager.authorization_url(args.redirect))
            return

        connection = await sync_service.complete_authorization(args.tenant_id, args.shop_id, args.code)
        logger.info(
            "Shop connected",
            tenant_id=connection.tenant_id,
            shop_id=connection.shop_id,
            expires_at=format_instant(connection.access_token_expires_at),
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Authorize a marketplace shop")
    parser.add_argument("--tenant-id")
    parser.add_argument("--shop-id", type=int)
    parser.add_argument("--code", help="Code from the redirect; omit to print the authorization link")
    parser.add_argument("--redirect", default=None, help="Override MARKETPLACE_REDIRECT_URL")
    args = parser.parse_args()
    if args.code is not None and (args.tenant_id is None or args.shop_id is None):
        parser.error("--code requires --tenant-id and --shop-id")

    configure_logging(get_settings())
    asyncio.run(main(args))
