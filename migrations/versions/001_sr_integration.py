"""Soft Restaurant integration schema - connections, mappings, sale event store, ledger, alerts

Revision ID: 001_sr_integration
Revises:
Create Date: 2025-01-20

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001_sr_integration'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(), server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()))
    return columns


def upgrade() -> None:
    # Integration connections and identifier mappings
    op.create_table(
        'integration_connections',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False, server_default='Soft Restaurant'),
        sa.Column('api_key_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('sr_company_id', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='connected'),
        sa.Column('default_branch_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('recipe_deduction_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('dedup_scope', sa.String(20), nullable=False, server_default='warehouse'),
        sa.Column('timezone', sa.String(50), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'sr_warehouse_mappings',
        _id(),
        sa.Column('integration_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('integration_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('warehouse_code', sa.String(20), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint('integration_id', 'warehouse_code', name='uq_sr_warehouse_mapping'),
    )

    op.create_table(
        'sr_payment_method_mappings',
        _id(),
        sa.Column('integration_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('integration_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('method_name', sa.String(100), nullable=False),
        sa.Column('payment_method_id', postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint('integration_id', 'method_name', name='uq_sr_payment_method_mapping'),
    )
    op.create_index('idx_sr_payment_method_mappings_integration', 'sr_payment_method_mappings', ['integration_id'])

    # Catalog
    op.create_table(
        'menu_items',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('idx_menu_items_tenant', 'menu_items', ['tenant_id'])

    op.create_table(
        'ingredients',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('unit', sa.String(50), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('minimum_stock', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('reorder_quantity', sa.Numeric(14, 4), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('idx_ingredients_tenant', 'ingredients', ['tenant_id'])

    op.create_table(
        'recipes',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('menu_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('menu_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('yield_quantity', sa.Numeric(10, 4), nullable=False, server_default='1'),
        sa.Column('yield_unit', sa.String(50), server_default='portion'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_recipes_menu_item_active', 'recipes', ['menu_item_id', 'is_active'])

    op.create_table(
        'recipe_ingredients',
        _id(),
        sa.Column('recipe_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('recipes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ingredient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('ingredients.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_per_yield', sa.Numeric(12, 4), nullable=False),
        sa.Column('unit', sa.String(50), nullable=False),
        sa.Column('waste_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('is_optional', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.CheckConstraint('quantity_per_yield > 0', name='ck_recipe_ingredient_quantity_positive'),
        sa.CheckConstraint('waste_percentage >= 0 AND waste_percentage < 100', name='ck_recipe_ingredient_waste_range'),
    )

    # Movement type catalog, seeded with the only code SR documents
    movement_types = op.create_table(
        'sr_movement_types',
        sa.Column('code', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('affects_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_refund', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_complimentary', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.bulk_insert(movement_types, [
        {
            'code': 1,
            'name': 'Venta Normal',
            'description': 'Regular sale; deducts recipe ingredients',
            'affects_inventory': True,
            'is_refund': False,
            'is_complimentary': False,
        },
    ])

    # Sale event store
    op.create_table(
        'sr_sales',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('integration_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('integration_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(50), nullable=False),
        sa.Column('dedup_key', sa.String(20), nullable=False),
        sa.Column('sr_company_id', sa.String(50), nullable=True),
        sa.Column('warehouse_code', sa.String(20), nullable=False),
        sa.Column('station_code', sa.String(100), nullable=True),
        sa.Column('area_name', sa.String(100), nullable=True),
        sa.Column('table_code', sa.String(50), nullable=True),
        sa.Column('user_code', sa.String(50), nullable=True),
        sa.Column('customer_code', sa.String(50), nullable=True),
        sa.Column('sale_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('total', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('tip', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('recipe_cost', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('profit_margin', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('cancellation_type', sa.String(50), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('raw_payload', postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('tenant_id', 'integration_id', 'dedup_key', 'external_id', name='uq_sr_sale'),
        sa.CheckConstraint("status IN ('pending', 'completed', 'cancelled', 'error')", name='ck_sr_sale_status'),
    )
    op.create_index('idx_sr_sales_tenant_branch', 'sr_sales', ['tenant_id', 'branch_id'])
    op.create_index('idx_sr_sales_external_id', 'sr_sales', ['external_id'])
    op.create_index('idx_sr_sales_business_date', 'sr_sales', ['tenant_id', 'business_date'])

    op.create_table(
        'sr_sale_items',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sale_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sr_sales.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(50), nullable=False),
        sa.Column('description', sa.String(200), nullable=True),
        sa.Column('movement_type', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 4), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('subtotal_without_tax', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('tax_details', postgresql.JSONB(), nullable=True),
        sa.Column('tax_amount', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('menu_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('recipe_deducted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recipe_cost', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('deduction_error', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_sr_sale_items_sale', 'sr_sale_items', ['sale_id'])
    op.create_index('idx_sr_sale_items_product', 'sr_sale_items', ['product_id'])

    op.create_table(
        'sr_payments',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sale_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sr_sales.id', ondelete='CASCADE'), nullable=False),
        sa.Column('payment_method_name', sa.String(100), nullable=False),
        sa.Column('payment_method_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('amount', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('tip_amount', sa.Numeric(12, 4), nullable=False, server_default='0'),
        *_timestamps(updated=False),
    )
    op.create_index('idx_sr_payments_sale', 'sr_payments', ['sale_id'])

    op.create_table(
        'sr_product_mappings',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('integration_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('integration_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(50), nullable=False),
        sa.Column('external_name', sa.String(200), nullable=True),
        sa.Column('menu_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('confidence', sa.String(20), nullable=False, server_default='auto'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('suggested_menu_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('suggestion_score', sa.Numeric(5, 2), nullable=True),
        sa.Column('times_seen', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'integration_id', 'external_id', name='uq_sr_product_mapping'),
    )
    op.create_index('idx_sr_product_mappings_unmapped', 'sr_product_mappings', ['integration_id', 'menu_item_id'])

    op.create_table(
        'sr_sync_logs',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('integration_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('integration_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('log_type', sa.String(50), nullable=False),
        sa.Column('level', sa.String(20), nullable=False, server_default='info'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('sale_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sr_sales.id', ondelete='SET NULL'), nullable=True),
        sa.Column('external_id', sa.String(50), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('idx_sr_sync_logs_integration', 'sr_sync_logs', ['integration_id', 'created_at'])
    op.create_index('idx_sr_sync_logs_external_id', 'sr_sync_logs', ['external_id'])

    # Inventory ledger (append-only), stock projection and alerts
    op.create_table(
        'inventory_movements',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('ingredient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('ingredients.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 4), nullable=False),
        sa.Column('unit', sa.String(50), nullable=False),
        sa.Column('reference_type', sa.String(20), nullable=False),
        sa.Column('reference_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('total_cost', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('previous_stock', sa.Numeric(14, 4), nullable=False),
        sa.Column('new_stock', sa.Numeric(14, 4), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('idx_inventory_movements_stock', 'inventory_movements', ['tenant_id', 'branch_id', 'ingredient_id'])
    op.create_index('idx_inventory_movements_reference', 'inventory_movements', ['reference_type', 'reference_id'])

    op.create_table(
        'ingredient_stock',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('ingredient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('ingredients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_stock', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'branch_id', 'ingredient_id', name='uq_ingredient_stock'),
    )

    op.create_table(
        'low_stock_alerts',
        _id(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('ingredient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('ingredients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('alert_type', sa.String(20), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('current_stock', sa.Numeric(14, 4), nullable=False),
        sa.Column('minimum_stock', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('suggested_order_quantity', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    # At most one active alert per (branch, ingredient)
    op.create_index(
        'uq_low_stock_alerts_active', 'low_stock_alerts', ['branch_id', 'ingredient_id'],
        unique=True, postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('idx_low_stock_alerts_tenant_status', 'low_stock_alerts', ['tenant_id', 'status'])

    # The ledger is an audit trail: reject updates and deletes at the database level
    op.execute("""
        CREATE OR REPLACE FUNCTION inventory_movements_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'inventory_movements is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_inventory_movements_append_only
        BEFORE UPDATE OR DELETE ON inventory_movements
        FOR EACH ROW EXECUTE FUNCTION inventory_movements_append_only();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_inventory_movements_append_only ON inventory_movements")
    op.execute("DROP FUNCTION IF EXISTS inventory_movements_append_only()")

    op.drop_index('idx_low_stock_alerts_tenant_status', table_name='low_stock_alerts')
    op.drop_index('uq_low_stock_alerts_active', table_name='low_stock_alerts')
    op.drop_table('low_stock_alerts')
    op.drop_table('ingredient_stock')
    op.drop_index('idx_inventory_movements_reference', table_name='inventory_movements')
    op.drop_index('idx_inventory_movements_stock', table_name='inventory_movements')
    op.drop_table('inventory_movements')
    op.drop_index('idx_sr_sync_logs_external_id', table_name='sr_sync_logs')
    op.drop_index('idx_sr_sync_logs_integration', table_name='sr_sync_logs')
    op.drop_table('sr_sync_logs')
    op.drop_index('idx_sr_product_mappings_unmapped', table_name='sr_product_mappings')
    op.drop_table('sr_product_mappings')
    op.drop_index('idx_sr_payments_sale', table_name='sr_payments')
    op.drop_table('sr_payments')
    op.drop_index('idx_sr_sale_items_product', table_name='sr_sale_items')
    op.drop_index('idx_sr_sale_items_sale', table_name='sr_sale_items')
    op.drop_table('sr_sale_items')
    op.drop_index('idx_sr_sales_business_date', table_name='sr_sales')
    op.drop_index('idx_sr_sales_external_id', table_name='sr_sales')
    op.drop_index('idx_sr_sales_tenant_branch', table_name='sr_sales')
    op.drop_table('sr_sales')
    op.drop_table('sr_movement_types')
    op.drop_table('recipe_ingredients')
    op.drop_index('idx_recipes_menu_item_active', table_name='recipes')
    op.drop_table('recipes')
    op.drop_index('idx_ingredients_tenant', table_name='ingredients')
    op.drop_table('ingredients')
    op.drop_index('idx_menu_items_tenant', table_name='menu_items')
    op.drop_table('menu_items')
    op.drop_index('idx_sr_payment_method_mappings_integration', table_name='sr_payment_method_mappings')
    op.drop_table('sr_payment_method_mappings')
    op.drop_table('sr_warehouse_mappings')
    op.drop_table('integration_connections')
