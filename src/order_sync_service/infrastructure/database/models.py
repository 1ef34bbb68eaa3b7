"""SQLAlchemy models for the order sync store.

These models are stored in the 'order_sync' schema. Raw payloads and
normalized rows live in separate tables; no transaction spans both.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Schema for all order sync tables
SCHEMA = "order_sync"

MONEY = Numeric(18, 2)


class Base(DeclarativeBase):
    """Base class for all models."""

    __table_args__ = {"schema": SCHEMA}


# =============================================================================
# Enums
# =============================================================================


class OrderStatus(str, PyEnum):
    """Order statuses reported by the marketplace."""

    UNPAID = "UNPAID"
    READY_TO_SHIP = "READY_TO_SHIP"
    PROCESSED = "PROCESSED"
    RETRY_SHIP = "RETRY_SHIP"
    SHIPPED = "SHIPPED"
    TO_CONFIRM_RECEIVE = "TO_CONFIRM_RECEIVE"
    IN_CANCEL = "IN_CANCEL"
    CANCELLED = "CANCELLED"
    TO_RETURN = "TO_RETURN"
    COMPLETED = "COMPLETED"
    INVOICE_PENDING = "INVOICE_PENDING"
    UNKNOWN = "UNKNOWN"


# =============================================================================
# Connections
# =============================================================================


class Connection(Base):
    """Marketplace credentials for one (tenant, shop) pair.

    Tokens and their expiry are always written together by the token
    lifecycle manager. Revoked shops are disabled, never deleted.
    """

    __tablename__ = "connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    shop_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token_expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_sync_cursor: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "shop_id", name="uq_connections_tenant_shop"),
        Index("ix_connections_status", "status"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Raw Orders
# =============================================================================


class RawOrder(Base):
    """Order detail exactly as returned by the marketplace."""

    __tablename__ = "raw_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    shop_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    # SHA-256 of the canonical JSON payload, drives reprocessing
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_raw_orders_tenant_unprocessed", "tenant_id", "is_processed"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Normalized Orders
# =============================================================================


class NormalizedOrder(Base):
    """Reporting schema derived deterministically from a RawOrder."""

    __tablename__ = "normalized_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    shop_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # Money (Decimal, never float)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    shipping_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    actual_shipping_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    estimated_shipping_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    liquid_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    currency: Mapped[Optional[str]] = mapped_column(String(8))

    # Timestamps (UTC)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    pay_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ship_by_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    payment_method: Mapped[Optional[str]] = mapped_column(String(100))
    buyer_username: Mapped[Optional[str]] = mapped_column(String(255))
    shipping_carrier: Mapped[Optional[str]] = mapped_column(String(255))

    # Recipient address
    recipient_name: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(64))
    recipient_full_address: Mapped[Optional[str]] = mapped_column(Text)
    recipient_city: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_state: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_district: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_zipcode: Mapped[Optional[str]] = mapped_column(String(32))
    recipient_country: Mapped[Optional[str]] = mapped_column(String(8))

    # Back-reference to raw_orders.order_id and the payload version it came from
    raw_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_content_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_normalized_orders_tenant_created", "tenant_id", "created_at"),
        {"schema": SCHEMA},
    )
