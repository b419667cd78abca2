from __future__ import annotations

from sqlalchemy import BigInteger, Integer
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column


class JournalColumns:
    """
    Columns shared by every append-only journal table.

    key is the event key (chain_id | tx_hash | log_index); rollback deletes by
    (chain_id, block_number) and recomputation reads in
    (chain_id, block_number, log_index) order.
    """

    key: Mapped[bytes] = mapped_column(BYTEA, nullable=False)  # 68 bytes
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
