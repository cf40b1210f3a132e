"""initial ledger schema

Revision ID: 0001_initial_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the stock ledger, sale ledger, offline queue and sync tables:
- products / variants / colors: catalog; colors carry the materialized stock counter
- stock_in_history / stock_out_history / stock_movement_summary: stock ledger
- sales / sale_items / payment_history: sale and payment ledger
- returns / return_items: returns, with optional link back to the sale
- customer_accounts: per-customer running balance
- pending_sales: sales queued by offline terminals
- sync_connections / sync_jobs: delta sync state
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('company', sa.String(length=120), nullable=False),
        sa.Column('product_name', sa.String(length=120), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_updated_at', 'products', ['updated_at'])

    op.create_table(
        'variants',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('packing_size', sa.String(length=64), nullable=False),
        sa.Column('rate_cents', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_variants_product_id', 'variants', ['product_id'])
    op.create_index('ix_variants_updated_at', 'variants', ['updated_at'])

    op.create_table(
        'colors',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('variant_id', sa.String(length=36), nullable=False),
        sa.Column('color_name', sa.String(length=120), nullable=False),
        sa.Column('color_code', sa.String(length=32), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rate_override_cents', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_colors_stock_non_negative'),
        sa.ForeignKeyConstraint(['variant_id'], ['variants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_colors_variant_id', 'colors', ['variant_id'])
    op.create_index('ix_colors_updated_at', 'colors', ['updated_at'])

    # ============================================================================
    # Sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('is_manual_balance', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('due_date', sa.String(length=10), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('offline_id', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('offline_id', name='uq_sales_offline_id'),
    )
    op.create_index('ix_sales_customer_phone', 'sales', ['customer_phone'])
    op.create_index('ix_sales_status_created', 'sales', ['payment_status', 'created_at'])
    op.create_index('ix_sales_updated_at', 'sales', ['updated_at'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=False),
        sa.Column('color_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('rate_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('quantity_returned', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('quantity_returned <= quantity', name='ck_sale_items_returned_le_quantity'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['color_id'], ['colors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_color_id', 'sale_items', ['color_id'])
    op.create_index('ix_sale_items_updated_at', 'sale_items', ['updated_at'])

    op.create_table(
        'payment_history',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('previous_balance_cents', sa.Integer(), nullable=False),
        sa.Column('new_balance_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_history_sale_id', 'payment_history', ['sale_id'])
    op.create_index('ix_payment_history_customer_phone', 'payment_history', ['customer_phone'])
    op.create_index('ix_payment_history_sale_created', 'payment_history', ['sale_id', 'created_at'])
    op.create_index('ix_payment_history_updated_at', 'payment_history', ['updated_at'])

    # ============================================================================
    # Returns
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=True),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('return_type', sa.String(length=16), nullable=False),
        sa.Column('total_refund_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('refund_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_returns_sale_id', 'returns', ['sale_id'])
    op.create_index('ix_returns_customer_phone', 'returns', ['customer_phone'])
    op.create_index('ix_returns_updated_at', 'returns', ['updated_at'])

    op.create_table(
        'return_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('return_id', sa.String(length=36), nullable=False),
        sa.Column('color_id', sa.String(length=36), nullable=False),
        sa.Column('sale_item_id', sa.String(length=36), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('rate_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('stock_restored', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id']),
        sa.ForeignKeyConstraint(['color_id'], ['colors.id']),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_return_items_return_id', 'return_items', ['return_id'])
    op.create_index('ix_return_items_color_id', 'return_items', ['color_id'])
    op.create_index('ix_return_items_sale_item_id', 'return_items', ['sale_item_id'])
    op.create_index('ix_return_items_updated_at', 'return_items', ['updated_at'])

    # ============================================================================
    # Stock ledger
    # ============================================================================
    op.create_table(
        'stock_in_history',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('color_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('stock_in_date', sa.String(length=10), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='stock_in'),
        sa.Column('sale_id', sa.String(length=36), nullable=True),
        sa.Column('return_id', sa.String(length=36), nullable=True),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['color_id'], ['colors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_in_history_color_id', 'stock_in_history', ['color_id'])
    op.create_index('ix_stock_in_history_sale_id', 'stock_in_history', ['sale_id'])
    op.create_index('ix_stock_in_history_return_id', 'stock_in_history', ['return_id'])
    op.create_index('ix_stock_in_color_created', 'stock_in_history', ['color_id', 'created_at'])
    op.create_index('ix_stock_in_updated_at', 'stock_in_history', ['updated_at'])

    op.create_table(
        'stock_out_history',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('color_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('reference_id', sa.String(length=36), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('stock_out_date', sa.String(length=10), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['color_id'], ['colors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_out_history_color_id', 'stock_out_history', ['color_id'])
    op.create_index('ix_stock_out_color_created', 'stock_out_history', ['color_id', 'created_at'])
    op.create_index('ix_stock_out_reference', 'stock_out_history', ['reference_type', 'reference_id'])
    op.create_index('ix_stock_out_updated_at', 'stock_out_history', ['updated_at'])

    op.create_table(
        'stock_movement_summary',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('color_id', sa.String(length=36), nullable=False),
        sa.Column('summary_date', sa.String(length=10), nullable=False),
        sa.Column('opening_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_inward', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_outward', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_stock', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['color_id'], ['colors.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('color_id', 'summary_date', name='uq_stock_summary_color_date'),
    )
    op.create_index('ix_stock_movement_summary_color_id', 'stock_movement_summary', ['color_id'])
    op.create_index('ix_stock_summary_updated_at', 'stock_movement_summary', ['updated_at'])

    # ============================================================================
    # Customers
    # ============================================================================
    op.create_table(
        'customer_accounts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('total_purchased_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_transaction_at', sa.DateTime(), nullable=True),
        sa.Column('account_status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_phone', name='uq_customer_accounts_phone'),
    )
    op.create_index('ix_customer_accounts_updated_at', 'customer_accounts', ['updated_at'])

    # ============================================================================
    # Offline queue
    # ============================================================================
    op.create_table(
        'pending_sales',
        sa.Column('offline_id', sa.String(length=64), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('sale_data', sa.JSON(), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('synced_sale_id', sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('offline_id'),
    )
    op.create_index('ix_pending_sales_status', 'pending_sales', ['status'])
    op.create_index('ix_pending_sales_status_created', 'pending_sales', ['status', 'created_at'])

    # ============================================================================
    # Sync
    # ============================================================================
    op.create_table(
        'sync_connections',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False, server_default='sqlalchemy'),
        sa.Column('label', sa.String(length=120), nullable=True),
        sa.Column('database_url', sa.Text(), nullable=False),
        sa.Column('last_import_at', sa.DateTime(), nullable=True),
        sa.Column('last_export_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('job_type', sa.String(length=16), nullable=False),
        sa.Column('connection_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('dry_run', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('initiated_by', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['connection_id'], ['sync_connections.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_jobs_status_created', 'sync_jobs', ['status', 'created_at'])
    op.create_index('ix_sync_jobs_connection_status', 'sync_jobs', ['connection_id', 'status'])


def downgrade():
    op.drop_table('sync_jobs')
    op.drop_table('sync_connections')
    op.drop_table('pending_sales')
    op.drop_table('customer_accounts')
    op.drop_table('stock_movement_summary')
    op.drop_table('stock_out_history')
    op.drop_table('stock_in_history')
    op.drop_table('return_items')
    op.drop_table('returns')
    op.drop_table('payment_history')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('colors')
    op.drop_table('variants')
    op.drop_table('products')
