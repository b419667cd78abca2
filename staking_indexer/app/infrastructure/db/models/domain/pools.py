from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Index, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB


class PoolsDB(BaseDB):
    """
    Staking pool aggregate.

    One row = one (chain_id, contract_address, pool_id). For deposit pools the
    pool id is the reward pool index as bytes32; for builders it is the
    builder/subnet id.
    """

    __tablename__ = "pools"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_pools_chain_contract", "chain_id", "contract_address"),
        {"schema": "domain"},
    )

    # Identity
    key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)  # 84 bytes
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    pool_id: Mapped[bytes] = mapped_column(BYTEA, nullable=False)  # bytes32

    # Totals
    total_staked: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    total_users: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_claimed: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)

    # Config (merge-patched by creation / metadata events)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin: Mapped[bytes | None] = mapped_column(BYTEA, nullable=True)
    minimal_deposit: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    withdraw_lock_period_after_deposit: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    claim_lock_end: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    starts_at: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)

    slug: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
