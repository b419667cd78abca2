from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Index, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class RewardDistributionsDB(JournalColumns, BaseDB):
    """Rewards paid out by builders treasuries."""

    __tablename__ = "reward_distributions"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_reward_distributions_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_reward_distributions_receiver", "chain_id", "receiver"),
        {"schema": "journal"},
    )

    treasury_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    receiver: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    amount: Mapped[Decimal] = mapped_column(UINT256, nullable=False)
