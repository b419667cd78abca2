from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Index, Integer, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB


class UsersDB(BaseDB):
    """One row = one user address staking in one pool."""

    __tablename__ = "users"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_users_pool", "pool_key"),
        Index("ix_users_chain_address", "chain_id", "address"),
        {"schema": "domain"},
    )

    key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)  # pool key + address
    pool_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    staked: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    claimed: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    last_stake_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_deposit_amount: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    virtual_deposited: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    claim_lock_start: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
