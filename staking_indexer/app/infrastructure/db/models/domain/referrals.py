from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Index, Integer, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import UINT256, BaseDB


class ReferrersDB(BaseDB):
    """
    Referrer per pool. Shares its key layout with domain.users, so a referrer
    and the user row of the same address in the same pool have equal keys.
    """

    __tablename__ = "referrers"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_referrers_pool", "pool_key"),
        {"schema": "domain"},
    )

    key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    pool_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    claimed: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)


class ReferralsDB(BaseDB):
    """One row = one (referred user, referrer) pair in a pool; amount accumulates."""

    __tablename__ = "referrals"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_referrals_pool_referrer", "pool_key", "referrer_address"),
        {"schema": "domain"},
    )

    key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    pool_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    referral_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    referrer_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    amount: Mapped[Decimal] = mapped_column(UINT256, nullable=False, default=0)
