"""Create fulfillment schema

Revision ID: 001_fulfillment_schema
Revises:
Create Date: 2026-10-17

Tables for tenants, staff, products, warehouses, stock allocations, orders,
shipments, audit logs and in-app notifications.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_fulfillment_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    """Create every fulfillment table."""

    op.create_table(
        'businesses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('role', sa.String(30), nullable=False),
        sa.Column('business_id', sa.Uuid(), sa.ForeignKey('businesses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_business_id', 'users', ['business_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('weight_kg', sa.Float(), nullable=False),
        sa.Column('dimensions', sa.JSON(), nullable=False),
        sa.Column('business_id', sa.Uuid(), sa.ForeignKey('businesses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('barcode', sa.String(100), nullable=True),
        sa.Column('hs_code', sa.String(20), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('weight_kg > 0', name='ck_product_weight_positive'),
    )
    # Unique across all businesses; generated SKUs rely on this to detect races
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_business_id', 'products', ['business_id'])

    op.create_table(
        'warehouses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('region', sa.String(100), nullable=False),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('contact_phone', sa.String(30), nullable=True),
        sa.Column('contact_email', sa.String(100), nullable=True),
        sa.Column('manager', sa.String(100), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE',
                  comment='ACTIVE, INACTIVE, MAINTENANCE'),
        sa.Column('warehouse_type', sa.String(20), nullable=False, server_default='STORAGE',
                  comment='STORAGE, FULFILLMENT, DISTRIBUTION, CROSS_DOCK'),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )
    # The DEFAULT warehouse is provisioned lazily; this index makes that idempotent
    op.create_index('ix_warehouses_code', 'warehouses', ['code'], unique=True)
    op.create_index('ix_warehouses_name', 'warehouses', ['name'])
    op.create_index('ix_warehouses_status', 'warehouses', ['status'])

    op.create_table(
        'stock_allocations',
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('allocated_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('safety_stock', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('allocated_quantity >= 0', name='ck_allocation_quantity_non_negative'),
        sa.CheckConstraint('safety_stock >= 0', name='ck_allocation_safety_non_negative'),
        sa.CheckConstraint('safety_stock <= allocated_quantity', name='ck_allocation_safety_within_quantity'),
    )
    op.create_index('ix_stock_allocations_warehouse_id', 'stock_allocations', ['warehouse_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('external_order_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='NEW'),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_address', sa.Text(), nullable=False),
        sa.Column('customer_phone', sa.String(30), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assigned_logistics_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('fulfillment_warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('merchant_id', sa.Uuid(), sa.ForeignKey('businesses.id', ondelete='RESTRICT'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('merchant_id', 'external_order_id', name='uq_order_merchant_external_id'),
    )
    op.create_index('ix_orders_external_order_id', 'orders', ['external_order_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_assigned_logistics_id', 'orders', ['assigned_logistics_id'])
    op.create_index('ix_orders_fulfillment_warehouse_id', 'orders', ['fulfillment_warehouse_id'])
    op.create_index('ix_orders_merchant_id', 'orders', ['merchant_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_item_quantity_positive'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'shipments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('carrier_name', sa.String(100), nullable=True),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_status_update', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_shipments_tracking_number', 'shipments', ['tracking_number'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('changed_by_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_audit_logs_changed_by_id', 'audit_logs', ['changed_by_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('notification_type', sa.String(20), nullable=False, server_default='INFO'),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link_url', sa.String(500), nullable=True),
        sa.Column('template_id', sa.String(100), nullable=True),
        sa.Column('template_data', sa.JSON(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_unread', 'notifications', ['user_id', 'is_read'])


def downgrade() -> None:
    """Drop every fulfillment table."""
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_table('shipments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('stock_allocations')
    op.drop_table('warehouses')
    op.drop_table('products')
    op.drop_table('users')
    op.drop_table('businesses')
