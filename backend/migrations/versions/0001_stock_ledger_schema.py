"""stock ledger schema

Revision ID: 0001_stock_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the stock ledger schema from scratch:
- shops: tenant root
- products: product master with derived stock_qty and optimistic version_id
- stock_movements: append-only ledger with before/after snapshots
- transactions: completed checkouts that drive sale movements
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_stock_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # shops: Tenant root
    # ============================================================================
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shops_code', 'shops', ['code'], unique=True)
    op.create_index('ix_shops_is_active', 'shops', ['is_active'], unique=False)

    # ============================================================================
    # products: Product master
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'sku', name='uq_products_shop_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_shop_id', 'products', ['shop_id'], unique=False)
    op.create_index('ix_products_shop_name', 'products', ['shop_id', 'name'], unique=False)

    # ============================================================================
    # stock_movements: Append-only stock ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('stock_before', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_after', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reference_type', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('reference_line', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        # One movement per transaction line per product
        sa.UniqueConstraint(
            'product_id', 'reference_type', 'reference_id', 'reference_line',
            name='uq_movements_product_reference_line',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'], unique=False)
    op.create_index('ix_stock_movements_shop_id', 'stock_movements', ['shop_id'], unique=False)
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'], unique=False)
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'], unique=False)
    op.create_index('ix_movements_product_created', 'stock_movements', ['product_id', 'created_at'], unique=False)
    op.create_index('ix_movements_reference', 'stock_movements', ['reference_type', 'reference_id'], unique=False)

    # ============================================================================
    # transactions: Completed checkouts
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_shop_id', 'transactions', ['shop_id'], unique=False)
    op.create_index('ix_transactions_customer_id', 'transactions', ['customer_id'], unique=False)
    op.create_index('ix_transactions_status', 'transactions', ['status'], unique=False)
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'], unique=False)
    op.create_index(
        'ix_transactions_shop_status_created', 'transactions',
        ['shop_id', 'status', 'created_at'], unique=False,
    )


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('transactions')
    op.drop_table('stock_movements')
    op.drop_table('products')
    op.drop_table('shops')
