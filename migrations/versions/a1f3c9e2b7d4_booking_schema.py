"""booking schema with reservation overlap exclusion

Revision ID: a1f3c9e2b7d4
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1f3c9e2b7d4'
down_revision = None
branch_labels = None
depends_on = None


def _is_postgres():
    return op.get_bind().dialect.name == 'postgresql'


def upgrade():
    op.create_table(
        'city',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        'product',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('daily_rate', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        'addon',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('quantity_available', sa.Integer(), server_default='0'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
    )
    op.create_table(
        'customer',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('referral_code', sa.String(32), nullable=False, unique=True),
        sa.Column('referral_credit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        'promo_code',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('discount_type', sa.String(10), nullable=False),
        sa.Column('discount_value', sa.Integer(), nullable=False),
        sa.Column('min_order_total', sa.Integer(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('times_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        'inventory_item',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('sku', sa.String(40), nullable=False, unique=True),
        sa.Column('city_id', sa.BigInteger(), sa.ForeignKey('city.id'), nullable=False),
        sa.Column('product_id', sa.BigInteger(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='available'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_inventory_item_pool', 'inventory_item', ['city_id', 'product_id', 'status'])
    op.create_table(
        'order',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_phone', sa.String(20), nullable=True),
        sa.Column('delivery_address', sa.Text(), nullable=False),
        sa.Column('delivery_city_id', sa.BigInteger(), sa.ForeignKey('city.id'), nullable=False),
        sa.Column('return_address', sa.Text(), nullable=True),
        sa.Column('return_city_id', sa.BigInteger(), sa.ForeignKey('city.id'), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('return_date', sa.Date(), nullable=False),
        sa.Column('delivery_window', sa.String(50), nullable=True),
        sa.Column('return_window', sa.String(50), nullable=True),
        sa.Column('return_method', sa.String(10), nullable=False, server_default='pickup'),
        sa.Column('ship_back_address', sa.String(255), nullable=True),
        sa.Column('ship_back_city', sa.String(100), nullable=True),
        sa.Column('ship_back_state', sa.String(2), nullable=True),
        sa.Column('ship_back_zip', sa.String(10), nullable=True),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default='0')
            for name in (
                'rental_subtotal', 'addons_subtotal', 'subtotal', 'early_bird_discount', 'promo_discount',
                'referral_discount', 'referral_credit_applied', 'discount', 'rush_fee', 'delivery_fee',
                'ship_back_fee',
            )
        ],
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('tax', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('promo_code_id', sa.BigInteger(), sa.ForeignKey('promo_code.id'), nullable=True),
        sa.Column('referral_code_used', sa.String(32), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('abandoned_notice_sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_order_status_created', 'order', ['status', 'created_at'])
    op.create_index('ix_order_email', 'order', ['customer_email'])
    op.create_table(
        'order_item',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('product_id', sa.BigInteger(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('daily_rate', sa.Integer(), nullable=False),
        sa.Column('days', sa.Integer(), nullable=False),
        sa.Column('line_total', sa.Integer(), nullable=False),
    )
    op.create_table(
        'order_addon',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('addon_id', sa.BigInteger(), sa.ForeignKey('addon.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
    )
    op.create_table(
        'order_status_log',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('updated_by', sa.String(255), nullable=False),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        'reservation',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('inventory_item_id', sa.BigInteger(), sa.ForeignKey('inventory_item.id'), nullable=False),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('start_date <= end_date', name='ck_reservation_range'),
    )
    op.create_index('ix_reservation_unit_range', 'reservation', ['inventory_item_id', 'start_date', 'end_date'])
    op.create_index('ix_reservation_order', 'reservation', ['order_id'])

    if _is_postgres():
        # Two reservations of one unit may not share a single day (inclusive ranges)
        op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
        op.execute(
            "ALTER TABLE reservation ADD CONSTRAINT ex_reservation_unit_overlap "
            "EXCLUDE USING gist (inventory_item_id WITH =, daterange(start_date, end_date, '[]') WITH &&)"
        )


def downgrade():
    if _is_postgres():
        op.execute('ALTER TABLE reservation DROP CONSTRAINT IF EXISTS ex_reservation_unit_overlap')
    op.drop_index('ix_reservation_order', table_name='reservation')
    op.drop_index('ix_reservation_unit_range', table_name='reservation')
    op.drop_table('reservation')
    op.drop_table('order_status_log')
    op.drop_table('order_addon')
    op.drop_table('order_item')
    op.drop_index('ix_order_email', table_name='order')
    op.drop_index('ix_order_status_created', table_name='order')
    op.drop_table('order')
    op.drop_index('ix_inventory_item_pool', table_name='inventory_item')
    op.drop_table('inventory_item')
    op.drop_table('promo_code')
    op.drop_table('customer')
    op.drop_table('addon')
    op.drop_table('product')
    op.drop_table('city')
