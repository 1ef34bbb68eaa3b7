"""Persistence of marketplace credentials, one record per (tenant, shop)."""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from order_sync_service.infrastructure.database.store import KeyedStore
from shared.constants import CONNECTION_ACTIVE, CONNECTIONS_TABLE
from shared.time_utils import ensure_utc

CONNECTION_KEY = ("tenant_id", "shop_id")


@dataclass
class ConnectionRecord:
    """Credentials and sync bookkeeping for one authorized shop."""

    tenant_id: str
    shop_id: int
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    last_sync_cursor: str | None = None
    status: str = CONNECTION_ACTIVE
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.tenant_id, self.shop_id)

    @property
    def is_active(self) -> bool:
        return self.status == CONNECTION_ACTIVE

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ConnectionRecord":
        updated_at = row.get("updated_at")
        return cls(
            tenant_id=row["tenant_id"],
            shop_id=int(row["shop_id"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            access_token_expires_at=ensure_utc(row["access_token_expires_at"]),
            last_sync_cursor=row.get("last_sync_cursor"),
            status=row.get("status") or CONNECTION_ACTIVE,
            updated_at=ensure_utc(updated_at) if updated_at else None,
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


class TokenStore:
    """Reads and writes ConnectionRecords through the keyed store."""

    def __init__(self, store: KeyedStore):
        self.store = store

    async def get(self, tenant_id: str, shop_id: int) -> ConnectionRecord | None:
        rows = await self.store.select(
            CONNECTIONS_TABLE, {"tenant_id": tenant_id, "shop_id": shop_id}
        )
        return ConnectionRecord.from_row(rows[0]) if rows else None

    async def list_active(self, tenant_id: str | None = None) -> list[ConnectionRecord]:
        filter: dict[str, Any] = {"status": CONNECTION_ACTIVE}
        if tenant_id is not None:
            filter["tenant_id"] = tenant_id
        rows = await self.store.select(CONNECTIONS_TABLE, filter)
        return [ConnectionRecord.from_row(row) for row in rows]

    async def save(self, connection: ConnectionRecord) -> None:
        """Insert or fully overwrite the record for the connection's key."""
        await self.store.upsert(CONNECTIONS_TABLE, [connection.to_row()], CONNECTION_KEY)

    async def save_tokens(
        self,
        tenant_id: str,
        shop_id: int,
        *,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        updated_at: datetime,
    ) -> None:
        """Replace both tokens and their expiry in one write."""
        await self.store.update(
            CONNECTIONS_TABLE,
            {"tenant_id": tenant_id, "shop_id": shop_id},
            {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "access_token_expires_at": expires_at,
                "updated_at": updated_at,
            },
        )

    async def patch(
        self, tenant_id: str, shop_id: int, updated_at: datetime, **fields: Any
    ) -> int:
        return await self.store.update(
            CONNECTIONS_TABLE,
            {"tenant_id": tenant_id, "shop_id": shop_id},
            {**fields, "updated_at": updated_at},
        )
