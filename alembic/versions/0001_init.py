from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(10,2), nullable=False),
        sa.Column('stock', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=True),
        sa.Column('subtotal', sa.Numeric(10,2), nullable=False),
        sa.Column('total', sa.Numeric(10,2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('payment_method', sa.String(10), nullable=False),
        sa.Column('payment_status', sa.String(30), nullable=False),
        sa.Column('payment_session_id', sa.String(255), nullable=True, unique=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id'), nullable=False),
        sa.Column('qty', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('line_total', sa.Numeric(10,2), nullable=False),
        sa.CheckConstraint('qty >= 1', name='ck_order_lines_qty_positive'),
    )

def downgrade():
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('products')
