"""Create rewards ledger tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

Accounts, the append-only points ledger, expiry batches, the rewards
catalog, vouchers, redeemed rewards and missing points reports.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create rewards ledger tables."""
    op.create_table(
        'rewards_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('company_id', sa.String(64), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', sa.String(10), nullable=False, server_default='Bronze'),
        sa.Column('lifetime_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('yearly_spend', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spend_baseline', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spend_baseline_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_rewards_accounts'),
        sa.UniqueConstraint('user_id', name='uq_rewards_accounts_user_id'),
        sa.UniqueConstraint('company_id', name='uq_rewards_accounts_company_id'),
        sa.CheckConstraint('user_id IS NOT NULL OR company_id IS NOT NULL', name='ck_rewards_accounts_owner'),
    )

    op.create_table(
        'points_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('company_id', sa.String(64), nullable=True),
        sa.Column('points_amount', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(30), nullable=False),
        sa.Column('points_balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('reference_id', sa.String(100), nullable=True),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_points_ledger_entries_account_id_rewards_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_points_ledger_entries'),
    )
    op.create_index('ix_points_ledger_account_created', 'points_ledger_entries', ['account_id', 'created_at'])
    op.create_index('ix_points_ledger_user_created', 'points_ledger_entries', ['user_id', 'created_at'])
    op.create_index('ix_points_ledger_company_created', 'points_ledger_entries', ['company_id', 'created_at'])
    op.create_index('ix_points_ledger_reference', 'points_ledger_entries', ['reference_type', 'reference_id'])

    op.create_table(
        'points_expiry_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('original_points', sa.Integer(), nullable=False),
        sa.Column('earned_date', sa.DateTime(), nullable=False),
        sa.Column('expiry_date', sa.DateTime(), nullable=False),
        sa.Column('source', sa.String(500), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_points_expiry_batches_account_id_rewards_accounts'),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['points_ledger_entries.id'], name='fk_points_expiry_batches_ledger_entry_id_points_ledger_entries'),
        sa.PrimaryKeyConstraint('id', name='pk_points_expiry_batches'),
    )
    op.create_index('ix_points_expiry_account_date', 'points_expiry_batches', ['account_id', 'expiry_date'])
    op.create_index('ix_points_expiry_date', 'points_expiry_batches', ['expiry_date'])

    op.create_table(
        'reward_items',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.String(1000), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('reward_type', sa.String(20), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=True),
        sa.Column('validity_days', sa.Integer(), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_reward_items'),
    )

    op.create_table(
        'voucher_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('reward_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('points_used', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('confirmation_code', sa.String(50), nullable=False),
        sa.Column('redeemed_date', sa.DateTime(), nullable=False),
        sa.Column('expiry_date', sa.DateTime(), nullable=False),
        sa.Column('confirmed_date', sa.DateTime(), nullable=True),
        sa.Column('used_date', sa.DateTime(), nullable=True),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_voucher_redemptions_account_id_rewards_accounts'),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['points_ledger_entries.id'], name='fk_voucher_redemptions_ledger_entry_id_points_ledger_entries'),
        sa.PrimaryKeyConstraint('id', name='pk_voucher_redemptions'),
        sa.UniqueConstraint('confirmation_code', name='uq_voucher_redemptions_confirmation_code'),
    )
    op.create_index('ix_voucher_redemptions_account_status', 'voucher_redemptions', ['account_id', 'status'])
    op.create_index('ix_voucher_redemptions_status_expiry', 'voucher_redemptions', ['status', 'expiry_date'])

    op.create_table(
        'redeemed_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('reward_id', sa.String(64), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('redeemed_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_redeemed_rewards_account_id_rewards_accounts'),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['points_ledger_entries.id'], name='fk_redeemed_rewards_ledger_entry_id_points_ledger_entries'),
        sa.PrimaryKeyConstraint('id', name='pk_redeemed_rewards'),
    )

    op.create_table(
        'missing_points_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('order_id', sa.String(100), nullable=False),
        sa.Column('order_date', sa.Date(), nullable=False),
        sa.Column('expected_points', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(1000), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='reported'),
        sa.Column('reported_date', sa.DateTime(), nullable=False),
        sa.Column('resolved_date', sa.DateTime(), nullable=True),
        sa.Column('resolution_note', sa.String(1000), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['rewards_accounts.id'], name='fk_missing_points_reports_account_id_rewards_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_missing_points_reports'),
    )
    op.create_index('ix_missing_points_account_status', 'missing_points_reports', ['account_id', 'status'])


def downgrade():
    """Drop rewards ledger tables."""
    op.drop_index('ix_missing_points_account_status', table_name='missing_points_reports')
    op.drop_table('missing_points_reports')
    op.drop_table('redeemed_rewards')
    op.drop_index('ix_voucher_redemptions_status_expiry', table_name='voucher_redemptions')
    op.drop_index('ix_voucher_redemptions_account_status', table_name='voucher_redemptions')
    op.drop_table('voucher_redemptions')
    op.drop_table('reward_items')
    op.drop_index('ix_points_expiry_date', table_name='points_expiry_batches')
    op.drop_index('ix_points_expiry_account_date', table_name='points_expiry_batches')
    op.drop_table('points_expiry_batches')
    op.drop_index('ix_points_ledger_reference', table_name='points_ledger_entries')
    op.drop_index('ix_points_ledger_company_created', table_name='points_ledger_entries')
    op.drop_index('ix_points_ledger_user_created', table_name='points_ledger_entries')
    op.drop_index('ix_points_ledger_account_created', table_name='points_ledger_entries')
    op.drop_table('points_ledger_entries')
    op.drop_table('rewards_accounts')
