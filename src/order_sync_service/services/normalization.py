"""Normalization of stored raw orders into the reporting schema.

For each chunk the order is: read raw rows, map them, upsert the normalized
records, then flag the raw rows processed. The flag update is always last and
only runs after a successful upsert, so a failed write leaves the rows queued
for the next run.
"""

import structlog

from order_sync_service.errors import OrderMappingError, PersistenceError
from order_sync_service.infrastructure.database.store import KeyedStore
from order_sync_service.schemas import NormalizationResult
from order_sync_service.services.order_ingestion import chunked
from order_sync_service.services.order_mapping import normalize_order
from shared.constants import NORMALIZED_ORDERS_TABLE, RAW_ORDERS_TABLE

logger = structlog.get_logger()


class NormalizationEngine:
    """Turns unprocessed RawOrder rows into NormalizedOrder rows."""

    def __init__(self, store: KeyedStore, batch_size: int = 100):
        self.store = store
        self.batch_size = batch_size

    async def normalize(self, tenant_id: str) -> NormalizationResult:
        """Normalize every unprocessed raw order of a tenant.

        Rows that fail to map are logged and left unprocessed; a failed upsert
        leaves its whole chunk unprocessed. Neither stops the other chunks.
        """
        result = NormalizationResult(tenant_id=tenant_id)
        log = logger.bind(tenant_id=tenant_id)

        rows = await self.store.select(
            RAW_ORDERS_TABLE, {"tenant_id": tenant_id, "is_processed": False}
        )
        result.selected = len(rows)
        if not rows:
            log.debug("No raw orders to normalize")
            return result

        log.info("Normalizing raw orders", selected=len(rows))

        for batch in chunked(rows, self.batch_size):
            records = []
            for row in batch:
                try:
                    record = normalize_order(row["raw_payload"], tenant_id, row["shop_id"])
                    if record["order_id"] != row["order_id"]:
                        raise OrderMappingError(
                            f"Payload order_sn {record['order_id']} does not match row"
                        )
                except Exception as e:
                    result.failed += 1
                    result.errors.append(
                        {"order_id": row.get("order_id"), "type": type(e).__name__, "message": str(e)}
                    )
                    log.error("Error normalizing order", order_id=row.get("order_id"), error=str(e))
                    continue
                record["source_content_hash"] = row["content_hash"]
                records.append(record)

            if not records:
                continue

            order_ids = [record["order_id"] for record in records]
            try:
                await self.store.upsert(NORMALIZED_ORDERS_TABLE, records, "order_id")
            except PersistenceError as e:
                result.failed += len(records)
                result.errors.append({"order_ids": len(order_ids), **e.to_summary()})
                log.error("Normalized upsert failed, rows stay unprocessed", count=len(records), error=str(e))
                continue

            # Only the payload versions that were actually normalized get flagged
            try:
                await self.store.update(
                    RAW_ORDERS_TABLE,
                    {
                        "tenant_id": tenant_id,
                        "order_id": order_ids,
                        "content_hash": [record["source_content_hash"] for record in records],
                    },
                    {"is_processed": True},
                )
            except PersistenceError as e:
                result.failed += len(records)
                result.errors.append({"order_ids": len(order_ids), **e.to_summary()})
                log.error("Failed to flag raw orders as processed", count=len(records), error=str(e))
                continue

            result.normalized += len(records)

        log.info("Normalization complete", normalized=result.normalized, failed=result.failed)
        return result
