"""staking_aggregates

Revision ID: 2026_10_18_120000
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_10_18_120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UINT256 = sa.Numeric(78, 0)


def _journal_columns() -> list[sa.Column]:
    return [
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
    ]


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS domain')
    op.execute('CREATE SCHEMA IF NOT EXISTS journal')

    # ---------------------------------------------------------------- domain
    op.create_table(
        'pools',
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', postgresql.BYTEA(), nullable=False),
        sa.Column('pool_id', postgresql.BYTEA(), nullable=False),
        sa.Column('total_staked', UINT256, nullable=False),
        sa.Column('total_users', sa.BigInteger(), nullable=False),
        sa.Column('total_claimed', UINT256, nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('admin', postgresql.BYTEA(), nullable=True),
        sa.Column('minimal_deposit', UINT256, nullable=True),
        sa.Column('withdraw_lock_period_after_deposit', UINT256, nullable=True),
        sa.Column('claim_lock_end', UINT256, nullable=True),
        sa.Column('starts_at', UINT256, nullable=True),
        sa.Column('slug', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('created_at_block', sa.BigInteger(), nullable=False),
        sa.Column('created_at_timestamp', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_pools'),
        schema='domain',
    )
    op.create_index('ix_pools_chain_contract', 'pools', ['chain_id', 'contract_address'], schema='domain')

    op.create_table(
        'users',
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('pool_key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('address', postgresql.BYTEA(), nullable=False),
        sa.Column('staked', UINT256, nullable=False),
        sa.Column('claimed', UINT256, nullable=False),
        sa.Column('last_stake_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('last_deposit_amount', UINT256, nullable=False),
        sa.Column('virtual_deposited', UINT256, nullable=False),
        sa.Column('claim_lock_start', UINT256, nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_users'),
        schema='domain',
    )
    op.create_index('ix_users_pool', 'users', ['pool_key'], schema='domain')
    op.create_index('ix_users_chain_address', 'users', ['chain_id', 'address'], schema='domain')

    op.create_table(
        'referrers',
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('pool_key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('address', postgresql.BYTEA(), nullable=False),
        sa.Column('claimed', UINT256, nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_referrers'),
        schema='domain',
    )
    op.create_index('ix_referrers_pool', 'referrers', ['pool_key'], schema='domain')

    op.create_table(
        'referrals',
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('pool_key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('referral_address', postgresql.BYTEA(), nullable=False),
        sa.Column('referrer_address', postgresql.BYTEA(), nullable=False),
        sa.Column('amount', UINT256, nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_referrals'),
        schema='domain',
    )
    op.create_index(
        'ix_referrals_pool_referrer', 'referrals', ['pool_key', 'referrer_address'], schema='domain'
    )

    op.create_table(
        'global_counters',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('total_pools', sa.BigInteger(), nullable=False),
        sa.Column('total_users', sa.BigInteger(), nullable=False),
        sa.Column('total_users_across_pools', sa.BigInteger(), nullable=False),
        sa.Column('total_staked', UINT256, nullable=False),
        sa.Column('total_subnets', sa.BigInteger(), nullable=False),
        sa.Column('last_updated', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_global_counters'),
        schema='domain',
    )

    op.create_table(
        'chain_checkpoints',
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('chain_id', name='pk_chain_checkpoints'),
        schema='domain',
    )

    # --------------------------------------------------------------- journal
    op.create_table(
        'interactions',
        *_journal_columns(),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('amount', UINT256, nullable=False),
        sa.Column('pool_key', postgresql.BYTEA(), nullable=False),
        sa.Column('user_key', postgresql.BYTEA(), nullable=False),
        sa.Column('user_address', postgresql.BYTEA(), nullable=False),
        sa.Column('counterparty', postgresql.BYTEA(), nullable=True),
        sa.Column('balance_after', UINT256, nullable=True),
        sa.Column('virtual_deposited_after', UINT256, nullable=True),
        sa.Column('claim_lock_start_after', UINT256, nullable=True),
        sa.Column('low_fidelity', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_interactions'),
        schema='journal',
    )
    op.create_index(
        'ix_interactions_chain_block_log',
        'interactions',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index('ix_interactions_pool', 'interactions', ['pool_key'], schema='journal')
    op.create_index('ix_interactions_user', 'interactions', ['user_key'], schema='journal')

    op.create_table(
        'pool_config_changes',
        *_journal_columns(),
        sa.Column('pool_key', postgresql.BYTEA(), nullable=False),
        sa.Column('contract_address', postgresql.BYTEA(), nullable=False),
        sa.Column('pool_id', postgresql.BYTEA(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('fields', postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_pool_config_changes'),
        schema='journal',
    )
    op.create_index(
        'ix_pool_config_changes_chain_block_log',
        'pool_config_changes',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index('ix_pool_config_changes_pool', 'pool_config_changes', ['pool_key'], schema='journal')

    op.create_table(
        'admin_events',
        *_journal_columns(),
        sa.Column('contract_address', postgresql.BYTEA(), nullable=False),
        sa.Column('event_name', sa.Text(), nullable=False),
        sa.Column('args', postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_admin_events'),
        schema='journal',
    )
    op.create_index(
        'ix_admin_events_chain_block_log',
        'admin_events',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index(
        'ix_admin_events_contract_name', 'admin_events', ['contract_address', 'event_name'], schema='journal'
    )

    op.create_table(
        'token_transfers',
        *_journal_columns(),
        sa.Column('contract_address', postgresql.BYTEA(), nullable=False),
        sa.Column('sender', postgresql.BYTEA(), nullable=False),
        sa.Column('recipient', postgresql.BYTEA(), nullable=False),
        sa.Column('value', UINT256, nullable=False),
        sa.Column('is_staking_deposit', sa.Boolean(), nullable=False),
        sa.Column('is_staking_withdraw', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_token_transfers'),
        schema='journal',
    )
    op.create_index(
        'ix_token_transfers_chain_block_log',
        'token_transfers',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index('ix_token_transfers_sender', 'token_transfers', ['chain_id', 'sender'], schema='journal')
    op.create_index(
        'ix_token_transfers_recipient', 'token_transfers', ['chain_id', 'recipient'], schema='journal'
    )

    op.create_table(
        'subnet_deployments',
        *_journal_columns(),
        sa.Column('subnet', postgresql.BYTEA(), nullable=False),
        sa.Column('factory_address', postgresql.BYTEA(), nullable=False),
        sa.Column('creator', postgresql.BYTEA(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('salt', postgresql.BYTEA(), nullable=True),
        sa.PrimaryKeyConstraint('key', name='pk_subnet_deployments'),
        schema='journal',
    )
    op.create_index(
        'ix_subnet_deployments_chain_block_log',
        'subnet_deployments',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index(
        'ix_subnet_deployments_subnet', 'subnet_deployments', ['chain_id', 'subnet'], schema='journal'
    )


def downgrade() -> None:
    for table in ('subnet_deployments', 'token_transfers', 'admin_events', 'pool_config_changes', 'interactions'):
        op.drop_table(table, schema='journal')
    for table in ('chain_checkpoints', 'global_counters', 'referrals', 'referrers', 'users', 'pools'):
        op.drop_table(table, schema='domain')
    op.execute('DROP SCHEMA IF EXISTS journal')
