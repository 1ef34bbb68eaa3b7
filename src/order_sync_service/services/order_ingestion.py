"""Order ingestion: list order ids, fetch details, store raw payloads.

Listing for a shop always completes (every page) before the first detail batch
is fetched. A listing failure aborts the shop's run; a failing detail batch is
recorded and the remaining batches still run.
"""

import hashlib
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, TypeVar

import orjson
import structlog

from order_sync_service.errors import (
    IngestionError,
    MarketplaceApiError,
    OrderSyncError,
)
from order_sync_service.infrastructure.database.store import KeyedStore
from order_sync_service.schemas import IngestionResult
from order_sync_service.services.marketplace_client import MarketplaceClient
from order_sync_service.services.token_manager import TokenLifecycleManager
from shared.constants import (
    CURSOR_OVERLAP_MINUTES,
    DEFAULT_LOOKBACK_DAYS,
    MAX_LIST_WINDOW_DAYS,
    MAX_ORDER_DETAIL_BATCH_SIZE,
    MAX_ORDER_LIST_PAGE_SIZE,
    RAW_ORDERS_TABLE,
    TOKEN_REJECTED_ERROR_CODES,
)
from shared.time_utils import to_epoch, utcnow

logger = structlog.get_logger()

T = TypeVar("T")

RAW_UPDATE_COLUMNS = ("tenant_id", "shop_id", "raw_payload", "content_hash", "received_at")


@dataclass(frozen=True)
class TimeWindow:
    """Half-open listing window ``[start, end)`` in UTC."""

    start: datetime
    end: datetime

    @classmethod
    def lookback(cls, now: datetime, days: int) -> "TimeWindow":
        return cls(start=now - timedelta(days=days), end=now)

    def slices(self, max_days: int = MAX_LIST_WINDOW_DAYS) -> Iterator["TimeWindow"]:
        """Split into consecutive windows no longer than the marketplace allows."""
        step = timedelta(days=max_days)
        start = self.start
        while start < self.end:
            end = min(start + step, self.end)
            yield TimeWindow(start, end)
            start = end


def payload_hash(payload: dict[str, Any]) -> str:
    """SHA-256 over the key-sorted JSON encoding of a payload."""
    return hashlib.sha256(orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)).hexdigest()


def chunked(items: list[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class _ShopSession:
    """Current access token for one shop run, refreshed once per rejected call."""

    def __init__(self, token_manager: TokenLifecycleManager, tenant_id: str, shop_id: int, token: str):
        self.token_manager = token_manager
        self.tenant_id = tenant_id
        self.shop_id = shop_id
        self.token = token

    async def call(self, fn: Callable[[str], Awaitable[T]]) -> T:
        try:
            return await fn(self.token)
        except MarketplaceApiError as e:
            if e.code not in TOKEN_REJECTED_ERROR_CODES:
                raise
            logger.warning(
                "Access token rejected, forcing refresh",
                tenant_id=self.tenant_id,
                shop_id=self.shop_id,
                code=e.code,
            )
            self.token = await self.token_manager.force_refresh(
                self.tenant_id, self.shop_id, self.token
            )
        return await fn(self.token)


class OrderIngestionPipeline:
    """Fetches orders for one shop and persists them as RawOrder rows."""

    def __init__(
        self,
        client: MarketplaceClient,
        token_manager: TokenLifecycleManager,
        store: KeyedStore,
        *,
        page_size: int = MAX_ORDER_LIST_PAGE_SIZE,
        detail_batch_size: int = MAX_ORDER_DETAIL_BATCH_SIZE,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        cursor_overlap_minutes: int = CURSOR_OVERLAP_MINUTES,
        time_range_field: str = "create_time",
        optional_fields: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.token_manager = token_manager
        self.store = store
        self.page_size = min(page_size, MAX_ORDER_LIST_PAGE_SIZE)
        self.detail_batch_size = min(detail_batch_size, MAX_ORDER_DETAIL_BATCH_SIZE)
        self.lookback_days = lookback_days
        self.cursor_overlap_minutes = cursor_overlap_minutes
        self.time_range_field = time_range_field
        self.optional_fields = optional_fields
        self._clock = clock

    async def ingest(
        self,
        tenant_id: str,
        shop_id: int,
        status_filter: str | None = None,
        window: TimeWindow | None = None,
    ) -> IngestionResult:
        """Run one ingestion for a shop and return its counts.

        Without an explicit ``window`` the run resumes from the shop's sync
        cursor (minus a small overlap), bounded by the look-back period.

        Raises:
            IngestionError: no valid token, or listing failed.
        """
        if window is not None and window.start >= window.end:
            raise IngestionError(f"Empty ingestion window {window.start} - {window.end}")
        log = logger.bind(tenant_id=tenant_id, shop_id=shop_id)

        try:
            token = await self.token_manager.get_access_token(tenant_id, shop_id)
        except OrderSyncError as e:
            log.error("No valid access token, skipping ingestion", error=str(e))
            raise IngestionError(f"No valid access token for shop {shop_id}: {e}") from e

        if window is None:
            window = await self._default_window(tenant_id, shop_id)

        result = IngestionResult(
            tenant_id=tenant_id,
            shop_id=shop_id,
            window_start=window.start,
            window_end=window.end,
        )

        session = _ShopSession(self.token_manager, tenant_id, shop_id, token)

        try:
            order_ids = await self._list_order_ids(session, window, status_filter)
        except OrderSyncError as e:
            log.error("Order listing failed, aborting ingestion", error=str(e))
            raise IngestionError(f"Order listing failed for shop {shop_id}: {e}") from e

        result.listed = len(order_ids)
        log.info("Order listing complete", listed=result.listed)

        for index, batch in enumerate(chunked(order_ids, self.detail_batch_size)):
            try:
                orders = await session.call(
                    lambda token, batch=batch: self.client.get_order_detail(
                        token, shop_id, batch, self.optional_fields
                    )
                )
                result.fetched += len(orders)
                if len(orders) < len(batch):
                    log.warning(
                        "Detail batch returned fewer orders than requested",
                        batch=index,
                        requested=len(batch),
                        returned=len(orders),
                    )
                result.stored += await self._store_batch(tenant_id, shop_id, orders)
            except OrderSyncError as e:
                result.failed_batches += 1
                result.errors.append({"batch": index, "order_ids": len(batch), **e.to_summary()})
                log.error("Detail batch failed", batch=index, error=str(e))

        if not result.failed_batches:
            await self.token_manager.record_sync_cursor(
                tenant_id, shop_id, str(to_epoch(window.end))
            )

        log.info(
            "Ingestion complete",
            fetched=result.fetched,
            stored=result.stored,
            failed_batches=result.failed_batches,
        )
        return result

    async def _default_window(self, tenant_id: str, shop_id: int) -> TimeWindow:
        now = self._clock()
        window = TimeWindow.lookback(now, self.lookback_days)
        cursor = await self.token_manager.sync_cursor(tenant_id, shop_id)
        if cursor is None:
            return window
        resume_from = cursor - timedelta(minutes=self.cursor_overlap_minutes)
        return TimeWindow(start=min(max(window.start, resume_from), now), end=now)

    async def _list_order_ids(
        self, session: _ShopSession, window: TimeWindow, status_filter: str | None
    ) -> list[str]:
        seen: dict[str, None] = {}
        for part in window.slices():
            cursor = ""
            page = 0
            while True:
                response = await session.call(
                    lambda token, cursor=cursor, part=part: self.client.get_order_list(
                        token,
                        session.shop_id,
                        time_from=to_epoch(part.start),
                        time_to=to_epoch(part.end),
                        time_range_field=self.time_range_field,
                        page_size=self.page_size,
                        cursor=cursor,
                        order_status=status_filter,
                    )
                )
                page += 1
                for entry in response.get("order_list") or []:
                    order_sn = entry.get("order_sn")
                    if order_sn:
                        seen[order_sn] = None

                if not response.get("more"):
                    break
                next_cursor = response.get("next_cursor") or ""
                if not next_cursor or next_cursor == cursor:
                    raise IngestionError(
                        f"Listing reported more pages without a new cursor (page {page})"
                    )
                cursor = next_cursor
        return list(seen)

    async def _store_batch(
        self, tenant_id: str, shop_id: int, orders: list[dict[str, Any]]
    ) -> int:
        """Upsert raw orders; reset the processed flag only where content changed.

        New and changed orders are written together with ``is_processed=False``
        in one statement, so a stored hash never runs ahead of its flag.
        """
        received_at = self._clock()
        records: dict[str, dict[str, Any]] = {}
        for order in orders:
            order_sn = order.get("order_sn") if isinstance(order, dict) else None
            if not order_sn:
                logger.warning("Skipping order detail without order_sn", shop_id=shop_id)
                continue
            records[order_sn] = {
                "order_id": order_sn,
                "tenant_id": tenant_id,
                "shop_id": shop_id,
                "raw_payload": order,
                "content_hash": payload_hash(order),
                "is_processed": False,
                "received_at": received_at,
            }
        if not records:
            return 0

        existing = await self.store.select(RAW_ORDERS_TABLE, {"order_id": list(records)})
        previous_hashes = {row["order_id"]: row["content_hash"] for row in existing}

        pending = []
        unchanged = []
        for order_id, record in records.items():
            if previous_hashes.get(order_id) == record["content_hash"]:
                unchanged.append(record)
            else:
                pending.append(record)

        if pending:
            await self.store.upsert(
                RAW_ORDERS_TABLE,
                pending,
                "order_id",
                update_columns=RAW_UPDATE_COLUMNS + ("is_processed",),
            )
            requeued = sum(1 for record in pending if record["order_id"] in previous_hashes)
            if requeued:
                logger.debug("Changed orders queued for renormalization", count=requeued)
        if unchanged:
            await self.store.upsert(
                RAW_ORDERS_TABLE,
                unchanged,
                "order_id",
                update_columns=RAW_UPDATE_COLUMNS,
            )
        return len(records)
