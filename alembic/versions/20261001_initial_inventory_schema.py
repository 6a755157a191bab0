"""Initial inventory reconciliation schema

Revision ID: initial_inventory_schema
Revises:
Create Date: 2026-10-01

Creates the directory tables (warehouses, locations, products, customers,
suppliers), purchasing and goods receipts, sales and refunds, product
returns, the per-location inventory ledger, the notification outbox and
document sequences.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'initial_inventory_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)
MONEY = sa.Numeric(12, 2)
COST = sa.Numeric(14, 4)


def _timestamps(with_updated: bool = True) -> list:
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)]
    if with_updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    # ==================== directories ====================
    op.create_table(
        'warehouses',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('warehouse_code', sa.String(20), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_main_warehouse', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_warehouses_is_main_warehouse', 'warehouses', ['is_main_warehouse'])

    op.create_table(
        'locations',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('location_code', sa.String(20), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(20)),
        sa.Column('warehouse_id', UUID, sa.ForeignKey('warehouses.id', ondelete='SET NULL'),
                  comment='Set when this location is a warehouse'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_locations_warehouse_id', 'locations', ['warehouse_id'])

    op.create_table(
        'products',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('product_code', sa.String(50), nullable=False),
        sa.Column('sku', sa.String(50)),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('unit_cost', MONEY, nullable=False, server_default='0'),
        sa.Column('unit_price', MONEY, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_products_product_code', 'products', ['product_code'], unique=True)
    op.create_index('ix_products_sku', 'products', ['sku'])

    op.create_table(
        'customers',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('customer_code', sa.String(30), unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(20)),
        sa.Column('email', sa.String(255)),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_customers_phone', 'customers', ['phone'])

    op.create_table(
        'suppliers',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('supplier_code', sa.String(30), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(20)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
    )

    # ==================== service references ====================
    op.create_table(
        'warranty_claims',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('claim_number', sa.String(30), nullable=False, unique=True),
        sa.Column('customer_id', UUID, sa.ForeignKey('customers.id', ondelete='SET NULL')),
        sa.Column('status', sa.String(50), nullable=False, server_default='SUBMITTED'),
        *_timestamps(with_updated=False),
    )
    op.create_table(
        'job_sheets',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('job_number', sa.String(30), nullable=False, unique=True),
        sa.Column('customer_id', UUID, sa.ForeignKey('customers.id', ondelete='SET NULL')),
        sa.Column('location_id', UUID, sa.ForeignKey('locations.id', ondelete='RESTRICT')),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING'),
        *_timestamps(with_updated=False),
    )

    # ==================== purchasing ====================
    op.create_table(
        'purchase_orders',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('po_number', sa.String(30), nullable=False),
        sa.Column('supplier_id', UUID, sa.ForeignKey('suppliers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='DRAFT',
                  comment='DRAFT, SUBMITTED, CONFIRMED, PARTIALLY_RECEIVED, RECEIVED, COMPLETED, CANCELLED'),
        sa.Column('order_date', sa.Date(), nullable=False),
        sa.Column('received_date', sa.DateTime(timezone=True)),
        sa.Column('total_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('paid_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('balance_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', UUID),
        *_timestamps(),
    )
    op.create_index('ix_purchase_orders_po_number', 'purchase_orders', ['po_number'], unique=True)
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('purchase_order_id', UUID, sa.ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID, sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='Ordered quantity'),
        sa.Column('received_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('total_price', MONEY, nullable=False, server_default='0'),
        *_timestamps(with_updated=False),
        sa.CheckConstraint('received_quantity >= 0', name='ck_po_item_received_non_negative'),
        sa.CheckConstraint('received_quantity <= quantity', name='ck_po_item_received_le_ordered'),
    )
    op.create_index('ix_purchase_order_items_purchase_order_id', 'purchase_order_items', ['purchase_order_id'])

    op.create_table(
        'goods_receipts',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('receipt_number', sa.String(30), nullable=False, comment='GRN-YYYY-NNNN'),
        sa.Column('purchase_order_id', UUID, sa.ForeignKey('purchase_orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('destination_location_id', UUID, sa.ForeignKey('locations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING_QC',
                  comment='PENDING_QC, INSPECTING, COMPLETED'),
        sa.Column('receipt_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_by', UUID),
        sa.Column('invoice_number', sa.String(50)),
        sa.Column('invoice_date', sa.Date()),
        sa.Column('quality_check_by', UUID),
        sa.Column('quality_check_date', sa.DateTime(timezone=True)),
        sa.Column('quality_check_notes', sa.Text()),
        sa.Column('approved_by', UUID),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('approved_location_id', UUID, sa.ForeignKey('locations.id', ondelete='RESTRICT')),
        sa.Column('total_value', MONEY, nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
    )
    op.create_index('ix_goods_receipts_receipt_number', 'goods_receipts', ['receipt_number'], unique=True)
    op.create_index('ix_goods_receipts_purchase_order_id', 'goods_receipts', ['purchase_order_id'])
    op.create_index('ix_goods_receipts_status', 'goods_receipts', ['status'])
    op.create_index('ix_goods_receipts_po_status', 'goods_receipts', ['purchase_order_id', 'status'])

    op.create_table(
        'goods_receipt_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('goods_receipt_id', UUID, sa.ForeignKey('goods_receipts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID, sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('ordered_quantity', sa.Integer(), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False),
        sa.Column('accepted_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejected_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quality_status', sa.String(50), nullable=False, server_default='PENDING',
                  comment='PENDING, ACCEPTED, REJECTED, DAMAGED, PARTIAL'),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('batch_number', sa.String(50)),
        sa.Column('expiry_date', sa.Date()),
        sa.Column('notes', sa.Text()),
        *_timestamps(with_updated=False),
        sa.CheckConstraint('received_quantity > 0', name='ck_grn_item_received_positive'),
        sa.CheckConstraint('accepted_quantity + rejected_quantity <= received_quantity',
                           name='ck_grn_item_accepted_rejected_le_received'),
    )
    op.create_index('ix_goods_receipt_items_goods_receipt_id', 'goods_receipt_items', ['goods_receipt_id'])

    # ==================== sales ====================
    op.create_table(
        'sales',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('invoice_number', sa.String(30), nullable=False),
        sa.Column('customer_id', UUID, sa.ForeignKey('customers.id', ondelete='SET NULL')),
        sa.Column('location_id', UUID, sa.ForeignKey('locations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='COMPLETED',
                  comment='DRAFT, COMPLETED, CANCELLED, REFUNDED, PARTIAL_REFUND'),
        *_timestamps(),
    )
    op.create_index('ix_sales_invoice_number', 'sales', ['invoice_number'], unique=True)
    op.create_index('ix_sales_status', 'sales', ['status'])

    op.create_table(
        'sale_refunds',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('refund_number', sa.String(30), nullable=False, unique=True),
        sa.Column('sale_id', UUID, sa.ForeignKey('sales.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('refund_method', sa.String(30), nullable=False),
        sa.Column('reason', sa.Text()),
        sa.Column('processed_by', UUID),
        *_timestamps(with_updated=False),
        sa.CheckConstraint('amount > 0', name='ck_sale_refund_amount_positive'),
    )
    op.create_index('ix_sale_refunds_sale_id', 'sale_refunds', ['sale_id'])

    # ==================== product returns ====================
    op.create_table(
        'product_returns',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('return_number', sa.String(30), nullable=False, comment='RTN-YYYY-NNNN'),
        sa.Column('location_id', UUID, sa.ForeignKey('locations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_id', UUID),
        sa.Column('customer_id', UUID, sa.ForeignKey('customers.id', ondelete='SET NULL')),
        sa.Column('customer_name', sa.String(200)),
        sa.Column('customer_phone', sa.String(20)),
        sa.Column('product_id', UUID, sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(100)),
        sa.Column('product_value', MONEY),
        sa.Column('return_reason', sa.Text(), nullable=False),
        sa.Column('return_category', sa.String(30), nullable=False),
        sa.Column('condition', sa.String(30)),
        sa.Column('condition_notes', sa.Text()),
        sa.Column('priority', sa.String(20), nullable=False, server_default='NORMAL'),
        sa.Column('status', sa.String(50), nullable=False, server_default='RECEIVED',
                  comment='RECEIVED, INSPECTING, PENDING_APPROVAL, APPROVED, REJECTED, COMPLETED, CANCELLED'),
        sa.Column('inspected_by', UUID),
        sa.Column('inspected_at', sa.DateTime(timezone=True)),
        sa.Column('inspection_notes', sa.Text()),
        sa.Column('approved_by', UUID),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('approval_notes', sa.Text()),
        sa.Column('resolution_type', sa.String(30)),
        sa.Column('resolution_details', sa.Text()),
        sa.Column('refund_amount', MONEY),
        sa.Column('sale_refund_id', UUID, sa.ForeignKey('sale_refunds.id', ondelete='SET NULL')),
        sa.Column('processed_by', UUID),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', UUID),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_product_return_quantity_positive'),
    )
    op.create_index('ix_product_returns_return_number', 'product_returns', ['return_number'], unique=True)
    op.create_index('ix_product_returns_location_id', 'product_returns', ['location_id'])
    op.create_index('ix_product_returns_product_id', 'product_returns', ['product_id'])
    op.create_index('ix_product_returns_status', 'product_returns', ['status'])
    op.create_index('ix_product_returns_source', 'product_returns', ['source_type', 'source_id'])

    # ==================== inventory ledger ====================
    op.create_table(
        'product_inventory',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('product_id', UUID, sa.ForeignKey('products.id'), nullable=False),
        sa.Column('location_id', UUID, sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_stock_level', sa.Integer()),
        sa.Column('average_cost', COST, nullable=False, server_default='0'),
        sa.Column('total_value', MONEY, nullable=False, server_default='0'),
        sa.Column('last_restocked', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('product_id', 'location_id', name='uq_product_inventory_product_location'),
        sa.CheckConstraint('quantity >= 0', name='ck_product_inventory_quantity_non_negative'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_product_inventory_reserved_non_negative'),
        sa.CheckConstraint('reserved_quantity <= quantity', name='ck_product_inventory_reserved_le_quantity'),
    )
    op.create_index('ix_product_inventory_product_id', 'product_inventory', ['product_id'])
    op.create_index('ix_product_inventory_location_id', 'product_inventory', ['location_id'])

    op.create_table(
        'product_stock_movements',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('product_id', UUID, sa.ForeignKey('products.id'), nullable=False),
        sa.Column('location_id', UUID, sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('movement_type', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('unit_cost', MONEY),
        sa.Column('reference_type', sa.String(50)),
        sa.Column('reference_id', UUID),
        sa.Column('reference_number', sa.String(50)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', UUID),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_product_stock_movements_movement_type', 'product_stock_movements', ['movement_type'])
    op.create_index('ix_product_stock_movements_created_at', 'product_stock_movements', ['created_at'])
    op.create_index('ix_product_stock_movements_product_location', 'product_stock_movements',
                    ['product_id', 'location_id'])
    op.create_index('ix_product_stock_movements_reference', 'product_stock_movements',
                    ['reference_type', 'reference_id'])

    # ==================== notifications ====================
    op.create_table(
        'notifications',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('event_kind', sa.String(50), nullable=False),
        sa.Column('entity_ids', sa.JSON(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False, server_default='SMS'),
        sa.Column('recipient', sa.String(50)),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True)),
        sa.Column('sent_at', sa.DateTime(timezone=True)),
        sa.Column('error_message', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_notifications_event_kind', 'notifications', ['event_kind'])
    op.create_index('ix_notifications_status', 'notifications', ['status'])
    op.create_index('ix_notifications_status_next_attempt', 'notifications', ['status', 'next_attempt_at'])

    # ==================== document sequences ====================
    op.create_table(
        'document_sequences',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('document_type', sa.String(10), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('current_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('padding_length', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('separator', sa.String(5), nullable=False, server_default='-'),
        *_timestamps(),
        sa.UniqueConstraint('document_type', 'year', name='uq_document_sequence_type_year'),
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])


def downgrade() -> None:
    for table in (
        'document_sequences',
        'notifications',
        'product_stock_movements',
        'product_inventory',
        'product_returns',
        'sale_refunds',
        'sales',
        'goods_receipt_items',
        'goods_receipts',
        'purchase_order_items',
        'purchase_orders',
        'job_sheets',
        'warranty_claims',
        'suppliers',
        'customers',
        'products',
        'locations',
        'warehouses',
    ):
        op.drop_table(table)
