from __future__ import annotations

from sqlalchemy import Index, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class SubnetDeploymentsDB(JournalColumns, BaseDB):
    """Subnet contracts deployed through the L2 / subnet factories."""

    __tablename__ = "subnet_deployments"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_subnet_deployments_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_subnet_deployments_subnet", "chain_id", "subnet"),
        {"schema": "journal"},
    )

    subnet: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    factory_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    creator: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    salt: Mapped[bytes | None] = mapped_column(BYTEA, nullable=True)
