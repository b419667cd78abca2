from __future__ import annotations

from typing import Any

from sqlalchemy import Index, PrimaryKeyConstraint, Text
from sqlalchemy.dialects.postgresql import BYTEA, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from staking_indexer.app.infrastructure.db.db_base import BaseDB
from staking_indexer.app.infrastructure.db.models.journal.base import JournalColumns


class AdminEventsDB(JournalColumns, BaseDB):
    """Proxy/ownership events (AdminChanged, Upgraded, ...) stored verbatim."""

    __tablename__ = "admin_events"
    __table_args__ = (
        PrimaryKeyConstraint("key"),
        Index("ix_admin_events_chain_block_log", "chain_id", "block_number", "log_index"),
        Index("ix_admin_events_contract_name", "contract_address", "event_name"),
        {"schema": "journal"},
    )

    contract_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    event_name: Mapped[str] = mapped_column(Text, nullable=False)
    args: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
