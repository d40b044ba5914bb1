"""Initial schema for users, restaurants, items, offers and event-sourced orders

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

Adds:
- users, restaurants
- items (catalog)
- offers, offer_usages
- orders (projection), order_events (append-only log)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create restaurants table
    op.create_table(
        'restaurants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_restaurants_owner_id', 'restaurants', ['owner_id'])

    # Create items table
    op.create_table(
        'items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sku', sa.String(64), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('idx_items_restaurant_sku', 'items', ['restaurant_id', 'sku'], unique=True)

    # Create offers table
    op.create_table(
        'offers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_discount', sa.Numeric(10, 2), nullable=True),
        sa.Column('code', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('auto_apply', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_stackable', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('valid_days', postgresql.JSONB(), nullable=True),
        sa.Column('valid_time_start', sa.String(5), nullable=True),
        sa.Column('valid_time_end', sa.String(5), nullable=True),
        sa.Column('minimum_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('minimum_quantity', sa.Integer(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_per_customer', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('target_item_ids', postgresql.JSONB(), nullable=True),
        sa.Column('excluded_item_ids', postgresql.JSONB(), nullable=True),
        sa.Column('conditions', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('usage_limit IS NULL OR usage_count <= usage_limit', name='ck_offers_usage_within_limit'),
    )
    op.create_index('idx_offers_restaurant_active', 'offers', ['restaurant_id', 'is_active'])
    op.create_index('idx_offers_restaurant_code', 'offers', ['restaurant_id', 'code'], unique=True)

    # Create orders table (projection of order_events)
    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_number', sa.String(50), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft'),
        sa.Column('order_type', sa.String(20), nullable=False, server_default='dine_in'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('table_number', sa.String(20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('items', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('applied_offers', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tip', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('surcharge', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(30), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('idx_orders_restaurant_status', 'orders', ['restaurant_id', 'status'])
    op.create_index('idx_orders_restaurant_created', 'orders', ['restaurant_id', 'created_at'])

    # Create order_events table (append-only)
    op.create_table(
        'order_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('properties', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_order_events_order_version', 'order_events', ['order_id', 'version'], unique=True)
    op.create_index('idx_order_events_order_created', 'order_events', ['order_id', 'created_at'])

    # Create offer_usages table
    op.create_table(
        'offer_usages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('offer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('offers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_ref', sa.String(255), nullable=True),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('order_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_offer_usages_offer_customer', 'offer_usages', ['offer_id', 'customer_ref'])


def downgrade() -> None:
    op.drop_index('idx_offer_usages_offer_customer', table_name='offer_usages')
    op.drop_table('offer_usages')
    op.drop_index('idx_order_events_order_created', table_name='order_events')
    op.drop_index('idx_order_events_order_version', table_name='order_events')
    op.drop_table('order_events')
    op.drop_index('idx_orders_restaurant_created', table_name='orders')
    op.drop_index('idx_orders_restaurant_status', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')
    op.drop_index('idx_offers_restaurant_code', table_name='offers')
    op.drop_index('idx_offers_restaurant_active', table_name='offers')
    op.drop_table('offers')
    op.drop_index('idx_items_restaurant_sku', table_name='items')
    op.drop_table('items')
    op.drop_index('ix_restaurants_owner_id', table_name='restaurants')
    op.drop_table('restaurants')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
