"""reward_distributions

Revision ID: 2026_10_18_130000
Revises: 2026_10_18_120000
Create Date: 2026-10-18 13:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_10_18_130000'
down_revision: Union[str, Sequence[str], None] = '2026_10_18_120000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'reward_distributions',
        sa.Column('key', postgresql.BYTEA(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('treasury_address', postgresql.BYTEA(), nullable=False),
        sa.Column('receiver', postgresql.BYTEA(), nullable=False),
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_reward_distributions'),
        schema='journal',
    )
    op.create_index(
        'ix_reward_distributions_chain_block_log',
        'reward_distributions',
        ['chain_id', 'block_number', 'log_index'],
        schema='journal',
    )
    op.create_index(
        'ix_reward_distributions_receiver',
        'reward_distributions',
        ['chain_id', 'receiver'],
        schema='journal',
    )


def downgrade() -> None:
    op.drop_table('reward_distributions', schema='journal')
