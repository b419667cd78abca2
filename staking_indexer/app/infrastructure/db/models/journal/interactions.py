from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Index, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class InteractionsDB(JournalColumns, BaseDB):
    """
    One row = one staking interaction (deposit / withdraw / claim / referral /
    referrer claim). *_after columns snapshot the user right after the event.
    """

    __tablename__ = "interactions"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_interactions_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_interactions_pool", "pool_key"),
        Index("ix_interactions_user", "user_key"),
        {"schema": "journal"},
    )

    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(UINT256, nullable=False)
    pool_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    user_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    user_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    counterparty: Mapped[bytes | None] = mapped_column(BYTEA, nullable=True)

    balance_after: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    virtual_deposited_after: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    claim_lock_start_after: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    low_fidelity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
