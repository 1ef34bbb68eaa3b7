"""Keyed store abstraction with atomic upsert-by-key.

The sync core only needs three operations per table: upsert records keyed by a
unique column set, select by equality/membership filter, and patch matching
rows. ``SqlAlchemyStore`` implements them with the dialect-native
``INSERT .. ON CONFLICT DO UPDATE`` so each call is a single atomic statement.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import structlog
from sqlalchemy import Table, and_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from order_sync_service.errors import PersistenceError
from order_sync_service.infrastructure.database.connection import (
    get_async_session_factory,
    get_db_session,
)
from order_sync_service.infrastructure.database.models import (
    Connection,
    NormalizedOrder,
    RawOrder,
)

logger = structlog.get_logger()

Record = dict[str, Any]
Filter = Mapping[str, Any]


class KeyedStore(Protocol):
    """Generic keyed persistence used by every sync component."""

    async def upsert(
        self,
        table: str,
        records: Sequence[Record],
        conflict_key: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        """Insert records, or overwrite ``update_columns`` on key conflict.

        ``update_columns=None`` overwrites every non-key column present in the
        records.
        """
        ...

    async def select(self, table: str, filter: Filter | None = None) -> list[Record]:
        """Return rows matching every filter entry (sequence values mean IN)."""
        ...

    async def update(self, table: str, filter: Filter, patch: Mapping[str, Any]) -> int:
        """Apply ``patch`` to matching rows and return the affected row count."""
        ...


def as_key_list(conflict_key: str | Sequence[str]) -> list[str]:
    if isinstance(conflict_key, str):
        return [conflict_key]
    return list(conflict_key)


def is_membership(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


class SqlAlchemyStore:
    """KeyedStore backed by an async SQLAlchemy engine (PostgreSQL or SQLite)."""

    TABLES: dict[str, Table] = {
        model.__tablename__: model.__table__
        for model in (Connection, RawOrder, NormalizedOrder)
    }

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = get_async_session_factory(engine)
        self.dialect = engine.dialect.name

    def _table(self, name: str) -> Table:
        try:
            return self.TABLES[name]
        except KeyError:
            raise PersistenceError(f"Unknown table: {name}") from None

    def _insert(self):
        if self.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif self.dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise PersistenceError(f"Upsert not supported for dialect {self.dialect}")
        return insert

    @staticmethod
    def _where(table: Table, filter: Filter | None):
        clauses = []
        for column, value in (filter or {}).items():
            col = table.c[column]
            clauses.append(col.in_(list(value)) if is_membership(value) else col == value)
        return and_(*clauses) if clauses else true()

    async def upsert(
        self,
        table: str,
        records: Sequence[Record],
        conflict_key: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        if not records:
            return 0
        sa_table = self._table(table)
        keys = as_key_list(conflict_key)
        insert = self._insert()

        stmt = insert(sa_table).values(list(records))
        columns = (
            list(update_columns)
            if update_columns is not None
            else [c for c in records[0] if c not in keys]
        )
        if columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=keys,
                set_={c: stmt.excluded[c] for c in columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)

        try:
            async with get_db_session(self.session_factory) as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Upsert failed", table=table, records=len(records), error=str(e))
            raise PersistenceError(f"Upsert into {table} failed: {e}") from e
        return len(records)

    async def select(self, table: str, filter: Filter | None = None) -> list[Record]:
        sa_table = self._table(table)
        stmt = select(sa_table).where(self._where(sa_table, filter)).order_by(sa_table.c.id)
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(stmt)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            logger.error("Select failed", table=table, error=str(e))
            raise PersistenceError(f"Select from {table} failed: {e}") from e
        return [dict(row) for row in rows]

    async def update(self, table: str, filter: Filter, patch: Mapping[str, Any]) -> int:
        sa_table = self._table(table)
        stmt = update(sa_table).where(self._where(sa_table, filter)).values(dict(patch))
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Update failed", table=table, error=str(e))
            raise PersistenceError(f"Update of {table} failed: {e}") from e
        return result.rowcount or 0
