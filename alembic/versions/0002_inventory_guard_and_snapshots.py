"""inventory deduction guard, idempotency key and product name snapshot

Revision ID: 0002
Revises: 0001_init
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Card orders deduct stock on verification, once
    op.add_column('orders', sa.Column('inventory_deducted', sa.Boolean, nullable=False, server_default=sa.false()))
    op.add_column('orders', sa.Column('idempotency_key', sa.String(255), nullable=True))
    op.create_unique_constraint('uq_orders_user_idempotency_key', 'orders', ['user_id', 'idempotency_key'])

    op.add_column('order_lines', sa.Column('product_name_snapshot', sa.String(200), nullable=True))


def downgrade() -> None:
    op.drop_column('order_lines', 'product_name_snapshot')

    op.drop_constraint('uq_orders_user_idempotency_key', 'orders', type_='unique')
    op.drop_column('orders', 'idempotency_key')
    op.drop_column('orders', 'inventory_deducted')
