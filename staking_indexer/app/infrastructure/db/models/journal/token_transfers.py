from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Index, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class TokenTransfersDB(JournalColumns, BaseDB):
    """
    Token Transfer events, flagged when either side is a staking contract.
    No aggregate effect.
    """

    __tablename__ = "token_transfers"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_token_transfers_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_token_transfers_sender", "chain_id", "sender"),
        Index("ix_token_transfers_recipient", "chain_id", "recipient"),
        {"schema": "journal"},
    )

    contract_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    sender: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    recipient: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    value: Mapped[Decimal] = mapped_column(UINT256, nullable=False)
    is_staking_deposit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_staking_withdraw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
