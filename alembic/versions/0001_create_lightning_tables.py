"""Create lightning invoice, order, payment and webhook delivery tables.

Revision ID: 0001_create_lightning_tables
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_lightning_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'lightning_invoices',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('order_id', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('payment_request', sa.Text(), nullable=True),
        sa.Column('checkout_link', sa.String(500), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True, index=True),
        sa.Column('provider_snapshot', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'orders',
        sa.Column('order_id', sa.String(64), primary_key=True),
        sa.Column('invoice_id', sa.String(64),
                  sa.ForeignKey('lightning_invoices.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('fulfillment_dispatched_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('invoice_id', sa.String(64),
                  sa.ForeignKey('lightning_invoices.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_hash', sa.String(128), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
    )

    op.create_table(
        'webhook_deliveries',
        sa.Column('delivery_id', sa.String(128), primary_key=True),
        sa.Column('invoice_id', sa.String(64), nullable=True, index=True),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('outcome', sa.String(32), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
    )

    # Reconciliation scans non-terminal invoices by age
    op.create_index(
        'ix_lightning_invoices_open_created_at',
        'lightning_invoices',
        ['created_at'],
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index('ix_lightning_invoices_open_created_at', table_name='lightning_invoices')
    op.drop_table('webhook_deliveries')
    op.drop_table('payments')
    op.drop_table('orders')
    op.drop_table('lightning_invoices')
