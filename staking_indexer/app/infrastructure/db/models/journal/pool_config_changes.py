from __future__ import annotations

from typing import Any

from sqlalchemy import Index, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import BYTEA, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class PoolConfigChangesDB(JournalColumns, BaseDB):
    """
    Merge-patches applied to domain.pools config.

    source: created | metadata | lazy. A pool exists as long as it has at
    least one row here.
    """

    __tablename__ = "pool_config_changes"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_pool_config_changes_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_pool_config_changes_pool", "pool_key"),
        {"schema": "journal"},
    )

    pool_key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    contract_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    pool_id: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    fields: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
