"""Token lifecycle for marketplace connections.

State per connection::

    NO_TOKEN -> VALID -> EXPIRING_SOON -> REFRESHING -> VALID | FAILED

Expiry is checked whenever a caller asks for a token. Refreshes for the same
(tenant, shop) are serialized by a per-connection lock; callers queued behind
an in-flight refresh re-read the stored connection once they get the lock and
reuse its result instead of refreshing again.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog

from order_sync_service.config import MarketplaceConfig
from order_sync_service.errors import (
    ConnectionNotFoundError,
    MarketplaceApiError,
    TokenRefreshError,
    TransportError,
)
from order_sync_service.logging_config import mask_token
from order_sync_service.services.marketplace_client import MarketplaceClient
from order_sync_service.services.token_store import ConnectionRecord, TokenStore
from shared.constants import CONNECTION_ACTIVE, CONNECTION_DISABLED
from shared.time_utils import utcnow

logger = structlog.get_logger()

ConnectionKey = tuple[str, int]


class TokenState(str, Enum):
    """Lifecycle state of a connection's access token."""

    NO_TOKEN = "no_token"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    REFRESHING = "refreshing"
    FAILED = "failed"


class TokenLifecycleManager:
    """Issues, persists and proactively refreshes marketplace tokens."""

    def __init__(
        self,
        config: MarketplaceConfig,
        client: MarketplaceClient,
        token_store: TokenStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.token_store = token_store
        self.refresh_margin = timedelta(seconds=config.refresh_margin_seconds)
        self._clock = clock
        self._locks: dict[ConnectionKey, asyncio.Lock] = {}
        self._refreshing: set[ConnectionKey] = set()
        self._failed: set[ConnectionKey] = set()

    def _lock_for(self, key: ConnectionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def token_state(self, connection: ConnectionRecord | None) -> TokenState:
        """Classify a connection's token at the current time."""
        if connection is None or not connection.access_token:
            return TokenState.NO_TOKEN
        if connection.key in self._refreshing:
            return TokenState.REFRESHING
        remaining = connection.access_token_expires_at - self._clock()
        if remaining >= self.refresh_margin:
            return TokenState.VALID
        if connection.key in self._failed:
            return TokenState.FAILED
        return TokenState.EXPIRING_SOON

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorization_url(self, redirect_url: str | None = None) -> str:
        return self.client.authorization_url(redirect_url)

    async def complete_authorization(
        self, tenant_id: str, shop_id: int, code: str
    ) -> ConnectionRecord:
        """Exchange an authorization code and persist the resulting connection.

        Re-authorizing a disabled shop reactivates it and keeps its sync cursor.
        """
        key = (tenant_id, shop_id)
        async with self._lock_for(key):
            try:
                tokens = await self.client.exchange_code(code, shop_id)
            except MarketplaceApiError as e:
                logger.error(
                    "Authorization code rejected",
                    tenant_id=tenant_id,
                    shop_id=shop_id,
                    code=e.code,
                )
                raise TokenRefreshError(f"Authorization code exchange failed: {e}", code=e.code) from e
            except TransportError as e:
                raise TokenRefreshError(f"Authorization code exchange failed: {e}") from e

            access_token, refresh_token, expire_in = _token_fields(tokens)
            existing = await self.token_store.get(tenant_id, shop_id)
            now = self._clock()
            connection = ConnectionRecord(
                tenant_id=tenant_id,
                shop_id=shop_id,
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=now + timedelta(seconds=expire_in),
                last_sync_cursor=existing.last_sync_cursor if existing else None,
                status=CONNECTION_ACTIVE,
                updated_at=now,
            )
            await self.token_store.save(connection)
            self._failed.discard(key)

        logger.info(
            "Shop authorized",
            tenant_id=tenant_id,
            shop_id=shop_id,
            expires_at=connection.access_token_expires_at.isoformat(),
        )
        return connection

    # -------------------------------------------------------------------------
    # Token access
    # -------------------------------------------------------------------------

    async def get_access_token(self, tenant_id: str, shop_id: int) -> str:
        """Return a token valid for at least the safety margin, refreshing if needed."""
        connection = await self._load_active(tenant_id, shop_id)
        if self.token_state(connection) is TokenState.VALID:
            return connection.access_token

        async with self._lock_for(connection.key):
            connection = await self._load_active(tenant_id, shop_id)
            if self.token_state(connection) is TokenState.VALID:
                return connection.access_token
            refreshed = await self._refresh(connection)
            return refreshed.access_token

    async def force_refresh(self, tenant_id: str, shop_id: int, rejected_token: str) -> str:
        """Refresh after the marketplace rejected ``rejected_token``.

        If another caller already replaced that token, the current one is
        returned without a second refresh.
        """
        key = (tenant_id, shop_id)
        async with self._lock_for(key):
            connection = await self._load_active(tenant_id, shop_id)
            if connection.access_token != rejected_token:
                return connection.access_token
            refreshed = await self._refresh(connection)
            return refreshed.access_token

    async def _refresh(self, connection: ConnectionRecord) -> ConnectionRecord:
        """Run one refresh. Caller must hold the connection's lock."""
        key = connection.key
        log = logger.bind(tenant_id=connection.tenant_id, shop_id=connection.shop_id)
        log.info(
            "Refreshing access token",
            expires_at=connection.access_token_expires_at.isoformat(),
            refresh_token=mask_token(connection.refresh_token),
        )
        self._refreshing.add(key)
        try:
            try:
                tokens = await self.client.refresh_access_token(
                    connection.refresh_token, connection.shop_id
                )
            except MarketplaceApiError as e:
                log.error("Token refresh rejected", code=e.code, error=e.message)
                self._failed.add(key)
                raise TokenRefreshError(f"Token refresh rejected: {e}", code=e.code) from e
            except TransportError as e:
                log.error("Token refresh transport failure", error=str(e))
                self._failed.add(key)
                raise TokenRefreshError(f"Token refresh failed: {e}") from e

            try:
                access_token, refresh_token, expire_in = _token_fields(tokens)
            except TokenRefreshError:
                self._failed.add(key)
                raise

            now = self._clock()
            expires_at = now + timedelta(seconds=expire_in)
            await self.token_store.save_tokens(
                connection.tenant_id,
                connection.shop_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                updated_at=now,
            )
        finally:
            self._refreshing.discard(key)

        self._failed.discard(key)
        connection.access_token = access_token
        connection.refresh_token = refresh_token
        connection.access_token_expires_at = expires_at
        connection.updated_at = now
        log.info("Access token refreshed", expires_at=expires_at.isoformat())
        return connection

    # -------------------------------------------------------------------------
    # Connection bookkeeping
    # -------------------------------------------------------------------------

    async def sync_cursor(self, tenant_id: str, shop_id: int) -> datetime | None:
        """End of the last completely ingested window, or None to start fresh."""
        connection = await self._load_active(tenant_id, shop_id)
        if not connection.last_sync_cursor:
            return None
        try:
            return datetime.fromtimestamp(int(connection.last_sync_cursor), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning(
                "Ignoring unreadable sync cursor",
                tenant_id=tenant_id,
                shop_id=shop_id,
                cursor=connection.last_sync_cursor,
            )
            return None

    async def record_sync_cursor(self, tenant_id: str, shop_id: int, cursor: str) -> None:
        """Store the end of the last completely ingested window for a shop."""
        async with self._lock_for((tenant_id, shop_id)):
            await self.token_store.patch(
                tenant_id, shop_id, self._clock(), last_sync_cursor=cursor
            )

    async def disable_connection(self, tenant_id: str, shop_id: int) -> None:
        """Soft-disable a revoked shop; its record and tokens are kept."""
        async with self._lock_for((tenant_id, shop_id)):
            updated = await self.token_store.patch(
                tenant_id, shop_id, self._clock(), status=CONNECTION_DISABLED
            )
        if not updated:
            raise ConnectionNotFoundError(tenant_id, shop_id)
        logger.info("Connection disabled", tenant_id=tenant_id, shop_id=shop_id)

    async def _load_active(self, tenant_id: str, shop_id: int) -> ConnectionRecord:
        connection = await self.token_store.get(tenant_id, shop_id)
        if connection is None or not connection.is_active:
            raise ConnectionNotFoundError(tenant_id, shop_id)
        return connection


def _token_fields(tokens: dict[str, Any]) -> tuple[str, str, int]:
    access_token = tokens.get("access_token")
    refresh_token = tokens.get("refresh_token")
    expire_in = tokens.get("expire_in")
    if not access_token or not refresh_token or not isinstance(expire_in, int) or expire_in <= 0:
        raise TokenRefreshError("Marketplace token response is missing token fields")
    return access_token, refresh_token, expire_in
