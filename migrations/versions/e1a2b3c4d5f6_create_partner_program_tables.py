"""Create shops, reconciliation ledger and partner lock tables

Revision ID: e1a2b3c4d5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1a2b3c4d5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('shop_name', sa.String(length=255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('webhook_secret', sa.String(length=100), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('edit_token_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='1'),
        sa.Column('installed_at', sa.DateTime(), nullable=True),
        sa.Column('uninstalled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_domain')
    )

    op.create_table('reconciliation_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('order_name', sa.String(length=64), nullable=True),
        sa.Column('partner_id', sa.String(length=255), nullable=True),
        sa.Column('code', sa.String(length=100), nullable=True),
        sa.Column('order_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('revenue_before', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('revenue_after', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('credit_before', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('credit_after', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('deposited', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.String(length=255), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'order_id', name='uq_reconciliation_shop_order')
    )
    op.create_index('ix_reconciliation_records_status', 'reconciliation_records', ['status'], unique=False)

    op.create_table('partner_locks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('partner_id', sa.String(length=255), nullable=False),
        sa.Column('owner', sa.String(length=64), nullable=True),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'partner_id', name='uq_partner_lock')
    )


def downgrade():
    op.drop_table('partner_locks')
    op.drop_index('ix_reconciliation_records_status', table_name='reconciliation_records')
    op.drop_table('reconciliation_records')
    op.drop_table('shops')
