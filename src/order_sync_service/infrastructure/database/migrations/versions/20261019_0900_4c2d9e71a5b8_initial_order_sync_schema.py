"""Initial order sync schema

Revision ID: 4c2d9e71a5b8
Revises:
Create Date: 2026-10-19 09:00:41.118204+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c2d9e71a5b8'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create connections table
    op.create_table('connections',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('tenant_id', sa.String(length=255), nullable=False),
    sa.Column('shop_id', sa.BigInteger(), nullable=False),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('refresh_token', sa.Text(), nullable=False),
    sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('last_sync_cursor', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'shop_id', name='uq_connections_tenant_shop'),
    schema='order_sync'
    )
    op.create_index('ix_connections_status', 'connections', ['status'], unique=False, schema='order_sync')
    op.create_index(op.f('ix_order_sync_connections_tenant_id'), 'connections', ['tenant_id'], unique=False, schema='order_sync')

    # Create raw_orders table
    op.create_table('raw_orders',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('order_id', sa.String(length=64), nullable=False),
    sa.Column('tenant_id', sa.String(length=255), nullable=False),
    sa.Column('shop_id', sa.BigInteger(), nullable=False),
    sa.Column('raw_payload', sa.JSON(), nullable=False),
    sa.Column('content_hash', sa.String(length=64), nullable=False),
    sa.Column('is_processed', sa.Boolean(), nullable=False),
    sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_id'),
    schema='order_sync'
    )
    op.create_index('ix_raw_orders_tenant_unprocessed', 'raw_orders', ['tenant_id', 'is_processed'], unique=False, schema='order_sync')

    # Create normalized_orders table
    op.create_table('normalized_orders',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('order_id', sa.String(length=64), nullable=False),
    sa.Column('tenant_id', sa.String(length=255), nullable=False),
    sa.Column('shop_id', sa.BigInteger(), nullable=False),
    sa.Column('status', sa.String(length=32), nullable=False),
    sa.Column('total_amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('shipping_fee', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('actual_shipping_fee', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('estimated_shipping_fee', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('liquid_value', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('paid_amount', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('currency', sa.String(length=8), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('pay_time', sa.DateTime(timezone=True), nullable=True),
    sa.Column('ship_by_date', sa.DateTime(timezone=True), nullable=True),
    sa.Column('payment_method', sa.String(length=100), nullable=True),
    sa.Column('buyer_username', sa.String(length=255), nullable=True),
    sa.Column('shipping_carrier', sa.String(length=255), nullable=True),
    sa.Column('recipient_name', sa.String(length=255), nullable=True),
    sa.Column('recipient_phone', sa.String(length=64), nullable=True),
    sa.Column('recipient_full_address', sa.Text(), nullable=True),
    sa.Column('recipient_city', sa.String(length=255), nullable=True),
    sa.Column('recipient_state', sa.String(length=255), nullable=True),
    sa.Column('recipient_district', sa.String(length=255), nullable=True),
    sa.Column('recipient_zipcode', sa.String(length=32), nullable=True),
    sa.Column('recipient_country', sa.String(length=8), nullable=True),
    sa.Column('raw_order_id', sa.String(length=64), nullable=False),
    sa.Column('source_content_hash', sa.String(length=64), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_id'),
    schema='order_sync'
    )
    op.create_index('ix_normalized_orders_tenant_created', 'normalized_orders', ['tenant_id', 'created_at'], unique=False, schema='order_sync')
    op.create_index(op.f('ix_order_sync_normalized_orders_created_at'), 'normalized_orders', ['created_at'], unique=False, schema='order_sync')
    op.create_index(op.f('ix_order_sync_normalized_orders_status'), 'normalized_orders', ['status'], unique=False, schema='order_sync')
    op.create_index(op.f('ix_order_sync_normalized_orders_tenant_id'), 'normalized_orders', ['tenant_id'], unique=False, schema='order_sync')


def downgrade() -> None:
    op.drop_index(op.f('ix_order_sync_normalized_orders_tenant_id'), table_name='normalized_orders', schema='order_sync')
    op.drop_index(op.f('ix_order_sync_normalized_orders_status'), table_name='normalized_orders', schema='order_sync')
    op.drop_index(op.f('ix_order_sync_normalized_orders_created_at'), table_name='normalized_orders', schema='order_sync')
    op.drop_index('ix_normalized_orders_tenant_created', table_name='normalized_orders', schema='order_sync')
    op.drop_table('normalized_orders', schema='order_sync')

    op.drop_index('ix_raw_orders_tenant_unprocessed', table_name='raw_orders', schema='order_sync')
    op.drop_table('raw_orders', schema='order_sync')

    op.drop_index(op.f('ix_order_sync_connections_tenant_id'), table_name='connections', schema='order_sync')
    op.drop_index('ix_connections_status', table_name='connections', schema='order_sync')
    op.drop_table('connections', schema='order_sync')
