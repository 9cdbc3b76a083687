"""order payments ledger, refund marker and UTC order timestamps

Revision ID: b8e41d7c3f20
Revises: a1f3c9e2b7d4
Create Date: 2026-10-19 15:30:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'b8e41d7c3f20'
down_revision = 'a1f3c9e2b7d4'
branch_labels = None
depends_on = None


def _is_postgres():
    return op.get_bind().dialect.name == 'postgresql'


def upgrade():
    op.create_table(
        'order_payment',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=False, unique=True),
        sa.Column('kind', sa.String(20), nullable=False, server_default='extension'),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_order_payment_order_id', 'order_payment', ['order_id'])
    with op.batch_alter_table('order') as batch_op:
        batch_op.add_column(sa.Column('refunded_at', sa.DateTime(), nullable=True))

    if _is_postgres():
        # Sweeps compare created_at against UTC; rows written outside the app must match
        for table, column in (('order', 'created_at'), ('order', 'updated_at'), ('order_status_log', 'timestamp')):
            op.execute(f"ALTER TABLE \"{table}\" ALTER COLUMN {column} SET DEFAULT (now() AT TIME ZONE 'utc')")


def downgrade():
    if _is_postgres():
        for table, column in (('order', 'created_at'), ('order', 'updated_at'), ('order_status_log', 'timestamp')):
            op.execute(f"ALTER TABLE \"{table}\" ALTER COLUMN {column} SET DEFAULT now()")
    with op.batch_alter_table('order') as batch_op:
        batch_op.drop_column('refunded_at')
    op.drop_index('ix_order_payment_order_id', table_name='order_payment')
    op.drop_table('order_payment')
