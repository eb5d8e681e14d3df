"""initial schema: users, catalog, carts, orders

Revision ID: 3a1c9e7b2d10
Revises:
Create Date: 2026-10-18 10:12:41.220415

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a1c9e7b2d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'category',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('slug', sa.String(length=160), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_category_slug', 'category', ['slug'], unique=True)

    op.create_table(
        'size',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('value', sa.String(length=64), nullable=False),
    )
    op.create_table(
        'color',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('value', sa.String(length=32), nullable=False),
    )

    op.create_table(
        'product',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=280), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('compare_price', sa.Integer(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True, unique=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('in_stock', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('images', sa.JSON(), nullable=False),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('price >= 0', name='ck_product_price_non_negative'),
    )
    op.create_index('ix_product_slug', 'product', ['slug'], unique=True)
    op.create_index('ix_product_category_id', 'product', ['category_id'])

    op.create_table(
        'variation',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id', ondelete='CASCADE'), nullable=False),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('size.id'), nullable=True),
        sa.Column('color_id', sa.Integer(), sa.ForeignKey('color.id'), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.CheckConstraint('quantity >= 0', name='ck_variation_quantity_non_negative'),
        sa.UniqueConstraint('product_id', 'size_id', 'color_id', name='uq_variation_product_size_color'),
    )
    op.create_index('ix_variation_product_id', 'variation', ['product_id'])

    op.create_table(
        'cart',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True, unique=True),
        sa.Column('session_key', sa.String(length=128), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('(user_id IS NULL) <> (session_key IS NULL)', name='ck_cart_single_owner'),
    )

    op.create_table(
        'cartline',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cart_id', sa.Integer(), sa.ForeignKey('cart.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variation_id', sa.Integer(), sa.ForeignKey('variation.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('cart_id', 'variation_id', name='uq_cartline_cart_variation'),
        sa.CheckConstraint('quantity > 0', name='ck_cartline_quantity_positive'),
    )
    op.create_index('ix_cartline_cart_id', 'cartline', ['cart_id'])
    op.create_index('ix_cartline_variation_id', 'cartline', ['variation_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=40), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('shipping_method', sa.String(length=32), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('shipping_cost', sa.Integer(), nullable=False),
        sa.Column('tax', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Integer(), nullable=False),
        sa.Column('final_amount', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'orderline',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variation_id', sa.Integer(), sa.ForeignKey('variation.id'), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('line_total', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_orderline_quantity_positive'),
    )
    op.create_index('ix_orderline_order_id', 'orderline', ['order_id'])
    op.create_index('ix_orderline_variation_id', 'orderline', ['variation_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('orderline')
    op.drop_table('orders')
    op.drop_table('cartline')
    op.drop_table('cart')
    op.drop_table('variation')
    op.drop_table('product')
    op.drop_table('color')
    op.drop_table('size')
    op.drop_table('category')
    op.drop_table('users')
