"""Test doubles for the keyed store, the marketplace API and the clock."""

import asyncio
import copy
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from itertools import count
from typing import Any

import httpx

from order_sync_service.errors import PersistenceError
from order_sync_service.infrastructure.database.store import as_key_list, is_membership
from shared.constants import (
    ORDER_DETAIL_PATH,
    ORDER_LIST_PATH,
    TOKEN_GET_PATH,
    TOKEN_REFRESH_PATH,
)

TENANT_ID = "tenant-a"
SHOP_ID = 123456


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class InMemoryStore:
    """KeyedStore kept in dicts, with switches to inject write failures."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_upserts_for: set[str] = set()
        self.fail_updates_for: set[str] = set()
        self.upsert_calls: list[str] = []
        self._ids = count(1)

    @staticmethod
    def _matches(row: Mapping[str, Any], filter: Mapping[str, Any] | None) -> bool:
        for column, value in (filter or {}).items():
            if is_membership(value):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables[table]

    def row(self, table: str, **filter: Any) -> dict[str, Any]:
        matches = [row for row in self.tables[table] if self._matches(row, filter)]
        assert len(matches) == 1, f"expected one {table} row for {filter}, got {len(matches)}"
        return matches[0]

    async def upsert(
        self,
        table: str,
        records: Sequence[dict[str, Any]],
        conflict_key: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        self.upsert_calls.append(table)
        if table in self.fail_upserts_for:
            raise PersistenceError(f"Injected upsert failure on {table}")
        keys = as_key_list(conflict_key)
        rows = self.tables[table]
        for record in records:
            existing = next(
                (row for row in rows if all(row.get(k) == record[k] for k in keys)), None
            )
            if existing is None:
                rows.append({"id": next(self._ids), **copy.deepcopy(dict(record))})
                continue
            columns = (
                update_columns
                if update_columns is not None
                else [c for c in record if c not in keys]
            )
            for column in columns:
                existing[column] = copy.deepcopy(record[column])
        return len(records)

    async def select(
        self, table: str, filter: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.tables[table] if self._matches(row, filter)]

    async def update(
        self, table: str, filter: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> int:
        if table in self.fail_updates_for:
            raise PersistenceError(f"Injected update failure on {table}")
        updated = 0
        for row in self.tables[table]:
            if self._matches(row, filter):
                row.update(copy.deepcopy(dict(patch)))
                updated += 1
        return updated


class FakeMarketplace:
    """Marketplace double served through ``httpx.MockTransport``.

    Orders are listed in insertion order with the cursor being the offset of
    the next page. Queued responses for a path are returned before the normal
    behaviour for that path resumes.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.orders: dict[str, dict[str, Any]] = {}
        self.queued: dict[str, list[httpx.Response]] = defaultdict(list)
        self.failing_order_ids: set[str] = set()
        self.rejected_tokens: set[str] = set()
        self.refresh_delay = 0.0
        self.expire_in = 14400
        self._issued = count(1)

    def add_order(self, payload: dict[str, Any]) -> None:
        self.orders[payload["order_sn"]] = payload

    def queue(self, path: str, body: dict[str, Any] | None = None, status: int = 200) -> None:
        self.queued[path].append(httpx.Response(status, json=body))

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.queued[path]:
            return self.queued[path].pop(0)

        if path == TOKEN_GET_PATH:
            return self._issue_tokens()
        if path == TOKEN_REFRESH_PATH:
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            return self._issue_tokens()

        if request.url.params.get("access_token") in self.rejected_tokens:
            return httpx.Response(
                403,
                json={
                    "error": "invalid_access_token",
                    "message": "Invalid access_token.",
                    "request_id": "req-rejected",
                },
            )
        if path == ORDER_LIST_PATH:
            return self._order_list(request)
        if path == ORDER_DETAIL_PATH:
            return self._order_detail(request)
        return httpx.Response(404, json={"error": "error_not_found", "message": path})

    def _issue_tokens(self) -> httpx.Response:
        n = next(self._issued)
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{n}",
                "refresh_token": f"refresh-{n}",
                "expire_in": self.expire_in,
                "error": "",
                "message": "",
                "request_id": f"req-token-{n}",
            },
        )

    def _order_list(self, request: httpx.Request) -> httpx.Response:
        page_size = int(request.url.params["page_size"])
        start = int(request.url.params.get("cursor") or 0)
        ids = list(self.orders)
        page = ids[start : start + page_size]
        more = start + page_size < len(ids)
        return httpx.Response(
            200,
            json={
                "error": "",
                "message": "",
                "response": {
                    "more": more,
                    "next_cursor": str(start + page_size) if more else "",
                    "order_list": [{"order_sn": order_sn} for order_sn in page],
                },
            },
        )

    def _order_detail(self, request: httpx.Request) -> httpx.Response:
        order_ids = request.url.params["order_sn_list"].split(",")
        if self.failing_order_ids.intersection(order_ids):
            return httpx.Response(
                200,
                json={"error": "error_param", "message": "Broken batch.", "request_id": "req-bad"},
            )
        return httpx.Response(
            200,
            json={
                "error": "",
                "message": "",
                "response": {
                    "order_list": [
                        copy.deepcopy(self.orders[order_sn])
                        for order_sn in order_ids
                        if order_sn in self.orders
                    ]
                },
            },
        )


async def no_sleep(_delay: float) -> None:
    return None


class FakeLock:
    """Stand-in for a ``redis.asyncio`` lock."""

    def __init__(self, acquired: bool = True, fail: bool = False):
        self.acquired = acquired
        self.fail = fail
        self.released = False

    async def acquire(self) -> bool:
        if self.fail:
            raise ConnectionError("redis went away")
        return self.acquired

    async def release(self) -> None:
        self.released = True


class FakeRedis:
    def __init__(self, lock: FakeLock):
        self._lock = lock
        self.requested: list[tuple[str, int, bool]] = []

    def lock(self, name: str, timeout: int, blocking: bool) -> FakeLock:
        self.requested.append((name, timeout, blocking))
        return self._lock
