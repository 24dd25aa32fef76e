"""add_pos_integration_tables

Revision ID: pos_integration_001
Revises:
Create Date: 2026-10-16 00:01:00.000000

Creates the POS connection, product mapping and sales log tables. The
users and inventory_items tables are owned by the dashboard schema.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = 'pos_integration_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One connection per tenant
    op.create_table(
        'pos_connections',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('encrypted_token', sa.Text(), nullable=False),
        sa.Column('token_iv', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='connected'),
        sa.Column('webhook_registered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_account_id', sa.String(), nullable=True),
        sa.Column('product_group_id', sa.String(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pos_connections_user_id', 'pos_connections', ['user_id'], unique=True)
    op.create_index('ix_pos_connections_provider_account_id', 'pos_connections', ['provider_account_id'])

    op.create_table(
        'pos_product_mappings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('inventory_item_id', sa.String(), nullable=False),
        sa.Column('external_product_id', sa.String(), nullable=False),
        sa.Column('external_product_name', sa.String(), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'external_product_id', name='uq_pos_product_mappings_user_product')
    )
    op.create_index('ix_pos_product_mappings_user_id', 'pos_product_mappings', ['user_id'])

    # Append-only; (user_id, external_invoice_id) is the webhook idempotency key
    op.create_table(
        'pos_sales_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('external_invoice_id', sa.String(), nullable=False),
        sa.Column('invoice_number', sa.String(), nullable=False, server_default=''),
        sa.Column('invoice_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('items', JSONB(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'external_invoice_id', name='uq_pos_sales_logs_user_invoice')
    )
    op.create_index('ix_pos_sales_logs_user_id', 'pos_sales_logs', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_pos_sales_logs_user_id', table_name='pos_sales_logs')
    op.drop_table('pos_sales_logs')
    op.drop_index('ix_pos_product_mappings_user_id', table_name='pos_product_mappings')
    op.drop_table('pos_product_mappings')
    op.drop_index('ix_pos_connections_provider_account_id', table_name='pos_connections')
    op.drop_index('ix_pos_connections_user_id', table_name='pos_connections')
    op.drop_table('pos_connections')
