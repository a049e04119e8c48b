"""Add voucher events table

Revision ID: b2c3d4e5f6a7
Revises: a1b2c3d4e5f6
Create Date: 2026-10-18

Append-only audit trail of voucher issue, transitions and sweep expiry.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b2c3d4e5f6a7'
down_revision = 'a1b2c3d4e5f6'
branch_labels = None
depends_on = None


def upgrade():
    """Create voucher_events table."""
    op.create_table(
        'voucher_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('voucher_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('actor', sa.String(64), nullable=True),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['voucher_id'], ['voucher_redemptions.id'], name='fk_voucher_events_voucher_id_voucher_redemptions'),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_voucher_events_account_id_rewards_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_voucher_events'),
    )
    op.create_index('ix_voucher_events_voucher_created', 'voucher_events', ['voucher_id', 'created_at'])
    op.create_index('ix_voucher_events_account_created', 'voucher_events', ['account_id', 'created_at'])


def downgrade():
    """Drop voucher_events table."""
    op.drop_index('ix_voucher_events_account_created', table_name='voucher_events')
    op.drop_index('ix_voucher_events_voucher_created', table_name='voucher_events')
    op.drop_table('voucher_events')
