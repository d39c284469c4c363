"""Initial schema - products, daily stock, links, bookings, commission payouts

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Safety Notes:
- Tables are only created when missing, so databases bootstrapped by
  create_tables() can be stamped and upgraded safely
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table('products'):
        op.create_table(
            'products',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('name', sa.String(150), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('product_type', sa.String(20), server_default='seabob'),
            sa.Column('daily_price', sa.Numeric(10, 2), server_default='0'),
            sa.Column('hourly_price', sa.Numeric(10, 2), server_default='0'),
            sa.Column('commission_percent', sa.Numeric(5, 2), server_default='0'),
            sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
            sa.Column('created_by', sa.String(100), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        )

    if not _has_table('daily_stock'):
        op.create_table(
            'daily_stock',
            sa.Column('id', sa.String(100), primary_key=True),
            sa.Column('day', sa.Date(), nullable=False),
            sa.Column('product_id', sa.String(36), nullable=False),
            sa.Column('available', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('reserved', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('updated_by', sa.String(100), nullable=True),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.UniqueConstraint('day', 'product_id', name='uq_daily_stock_day_product'),
        )
        op.create_index('ix_daily_stock_product_day', 'daily_stock', ['product_id', 'day'])

    if not _has_table('booking_links'):
        op.create_table(
            'booking_links',
            sa.Column('token', sa.String(100), primary_key=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('single_use', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('used_at', sa.DateTime(), nullable=True),
            sa.Column('visits', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('reservations_created', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_by', sa.String(100), nullable=True),
            sa.Column('partner_id', sa.String(100), nullable=True),
            sa.Column('partner_role', sa.String(20), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('last_access_at', sa.DateTime(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        )

    if not _has_table('bookings'):
        op.create_table(
            'bookings',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('reference', sa.String(30), nullable=False),
            sa.Column('client_name', sa.String(150), nullable=False),
            sa.Column('client_email', sa.String(255), nullable=False),
            sa.Column('client_phone', sa.String(30), nullable=True),
            sa.Column('client_whatsapp', sa.String(30), nullable=True),
            sa.Column('start_date', sa.Date(), nullable=False),
            sa.Column('end_date', sa.Date(), nullable=False),
            sa.Column('delivery_location', sa.String(50), nullable=True),
            sa.Column('boat_name', sa.String(100), nullable=True),
            sa.Column('mooring_number', sa.String(50), nullable=True),
            sa.Column('delivery_time', sa.String(5), nullable=True),
            sa.Column('total_price', sa.Numeric(10, 2), server_default='0'),
            sa.Column('status', sa.String(20), server_default='pendiente'),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('channel', sa.String(20), server_default='staff'),
            sa.Column('created_by', sa.String(100), nullable=True),
            sa.Column('partner_id', sa.String(100), nullable=True),
            sa.Column('partner_role', sa.String(20), nullable=True),
            sa.Column('is_direct_client', sa.Boolean(), server_default=sa.false()),
            sa.Column('public_link_id', sa.String(100),
                      sa.ForeignKey('booking_links.token', ondelete='SET NULL'), nullable=True),
            sa.Column('access_token', sa.String(64), nullable=False),
            sa.Column('client_signature', sa.Text(), nullable=True),
            sa.Column('terms_accepted', sa.Boolean(), server_default=sa.false()),
            sa.Column('terms_accepted_at', sa.DateTime(), nullable=True),
            sa.Column('agreement_signed', sa.Boolean(), server_default=sa.false()),
            sa.Column('payment_received', sa.Boolean(), server_default=sa.false()),
            sa.Column('payment_method', sa.String(30), nullable=True),
            sa.Column('payment_reference', sa.String(255), nullable=True),
            sa.Column('payment_received_at', sa.DateTime(), nullable=True),
            sa.Column('stripe_checkout_session_id', sa.String(255), nullable=True),
            sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True),
            sa.Column('refunded', sa.Boolean(), server_default=sa.false()),
            sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
            sa.Column('refund_method', sa.String(30), nullable=True),
            sa.Column('refund_reference', sa.String(255), nullable=True),
            sa.Column('refund_reason', sa.Text(), nullable=True),
            sa.Column('refunded_at', sa.DateTime(), nullable=True),
            sa.Column('stripe_refund_id', sa.String(255), nullable=True),
            sa.Column('commission_total', sa.Numeric(10, 2), server_default='0'),
            sa.Column('commission_paid', sa.Numeric(10, 2), server_default='0'),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('expired', sa.Boolean(), server_default=sa.false()),
            sa.Column('stock_released', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('stock_released_at', sa.DateTime(), nullable=True),
            sa.Column('stock_released_by', sa.String(100), nullable=True),
            sa.Column('confirmed_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        )
        op.create_index('ix_bookings_reference', 'bookings', ['reference'])
        op.create_index('ix_bookings_status', 'bookings', ['status'])
        op.create_index('ix_bookings_partner_id', 'bookings', ['partner_id'])
        op.create_index('ix_booking_hold', 'bookings', ['status', 'expires_at'])
        op.create_index('ix_booking_dates', 'bookings', ['start_date', 'end_date'])

    if not _has_table('booking_items'):
        op.create_table(
            'booking_items',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('booking_id', sa.String(36),
                      sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
            sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('product_id', sa.String(36), nullable=False),
            sa.Column('product_name', sa.String(150), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('rental_type', sa.String(10), server_default='dia'),
            sa.Column('duration', sa.Integer(), server_default='1'),
            sa.Column('unit_price', sa.Numeric(10, 2), server_default='0'),
            sa.Column('commission_percent', sa.Numeric(5, 2), server_default='0'),
        )
        op.create_index('ix_booking_items_booking_id', 'booking_items', ['booking_id'])

    if not _has_table('commission_payments'):
        op.create_table(
            'commission_payments',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('partner_id', sa.String(100), nullable=False),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('method', sa.String(30), nullable=True),
            sa.Column('reference', sa.String(255), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('created_by', sa.String(100), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index('ix_commission_payments_partner_id', 'commission_payments', ['partner_id'])

    if not _has_table('commission_payment_allocations'):
        op.create_table(
            'commission_payment_allocations',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('payment_id', sa.String(36),
                      sa.ForeignKey('commission_payments.id', ondelete='CASCADE'), nullable=False),
            sa.Column('booking_id', sa.String(36), nullable=False),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        )
        op.create_index('ix_commission_payment_allocations_payment_id',
                        'commission_payment_allocations', ['payment_id'])
        op.create_index('ix_commission_payment_allocations_booking_id',
                        'commission_payment_allocations', ['booking_id'])


def downgrade() -> None:
    op.drop_table('commission_payment_allocations')
    op.drop_table('commission_payments')
    op.drop_table('booking_items')
    op.drop_table('bookings')
    op.drop_table('booking_links')
    op.drop_table('daily_stock')
    op.drop_table('products')
