from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB


class GlobalCountersDB(BaseDB):
    """Singleton row (id = 'global') with protocol-wide totals."""

    __tablename__ = "global_counters"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, nullable=False)

    total_pools: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_users: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_users_across_pools: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_staked: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
    total_subnets: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_updated: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class ChainCheckpointsDB(BaseDB):
    """Last processed (block_number, log_index) per chain; read by readiness checks."""

    __tablename__ = "chain_checkpoints"
    __table_args__ = (
        PrimaryKeyConstraint("chain_id"),
        {"schema": "domain"},
    )

    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
