"""
Persistence mapping tests (no database): table layout and row conversion.
"""

from dataclasses import fields
from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql

from staking_indexer.app.domain.entities import (
    ENTITY_TYPES,
    EntityKind,
    RECORD_TYPES,
    ChainCheckpoint,
    CounterDelta,
    GlobalCounters,
    InteractionRecord,
    InteractionType,
    PoolConfigChange,
    RecordKind,
    User,
)
from staking_indexer.app.domain.errors import DuplicateInteraction, EntityNotFound
from staking_indexer.app.infrastructure.adapters.sqlalchemy_queries import _clamp, _jsonable
from staking_indexer.app.infrastructure.adapters.sqlalchemy_store import (
    ENTITY_TABLES,
    RECORD_TABLES,
    SqlAlchemySession,
    _from_row,
    _to_row,
)
from staking_indexer.app.infrastructure.db.db_base import BaseDB

KEY = b"\x01" * 68
TX = b"\x02" * 32


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def first(self):
        return self._rows[0] if self._rows else None

    def mappings(self):
        return self

    def one_or_none(self):
        return self.first()

    def one(self):
        return self._rows[0]

    def all(self):
        return list(self._rows)


class RecordingConnection:
    """Captures compiled SQL and replies with scripted rows."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.statements: list[str] = []

    async def execute(self, stmt):
        self.statements.append(str(stmt.compile(dialect=postgresql.dialect())))
        return _Result(self.replies.pop(0) if self.replies else [])


class TestTableLayout:
    def test_entity_tables_live_in_domain_schema(self):
        for kind, table in ENTITY_TABLES.items():
            assert table.schema == "domain"
            assert [c.name for c in table.primary_key.columns] == ["key"]
            assert set(table.c.keys()) == {f.name for f in fields(ENTITY_TYPES[kind])}

    def test_journal_tables_live_in_journal_schema(self):
        for kind, table in RECORD_TABLES.items():
            assert table.schema == "journal"
            assert [c.name for c in table.primary_key.columns] == ["key"]
            assert set(table.c.keys()) == {f.name for f in fields(RECORD_TYPES[kind])}

    def test_every_record_kind_has_a_table(self):
        assert set(RECORD_TABLES) == set(RecordKind)
        assert RECORD_TABLES[RecordKind.REWARD_DISTRIBUTION].name == "reward_distributions"

    def test_counters_and_checkpoints(self):
        tables = BaseDB.metadata.tables
        assert set(tables["domain.global_counters"].c.keys()) == {f.name for f in fields(GlobalCounters)}
        assert set(tables["domain.chain_checkpoints"].c.keys()) == {f.name for f in fields(ChainCheckpoint)}

    def test_amount_columns_hold_uint256(self):
        column = ENTITY_TABLES[EntityKind.POOL].c.total_staked
        assert column.type.precision == 78
        assert column.type.scale == 0


class TestRowConversion:
    def test_interaction_type_stored_as_text(self):
        record = InteractionRecord(
            key=KEY, chain_id=1, block_number=2, log_index=3, block_timestamp=4, transaction_hash=TX,
            type=InteractionType.WITHDRAW, amount=2**200, pool_key=b"\x03" * 84,
            user_key=b"\x04" * 104, user_address=b"\x05" * 20,
        )
        row = _to_row(record)
        assert row["type"] == "WITHDRAW"

        # asyncpg hands back Numeric as Decimal and BYTEA possibly as memoryview
        row = dict(row, amount=Decimal(2**200), user_address=memoryview(b"\x05" * 20))
        assert _from_row(InteractionRecord, row) == record

    def test_config_admin_is_hex_in_json(self):
        change = PoolConfigChange(
            key=KEY, chain_id=1, block_number=2, log_index=0, block_timestamp=4, transaction_hash=TX,
            pool_key=b"\x03" * 84, contract_address=b"\x06" * 20, pool_id=b"\x00" * 32,
            source="created", fields={"name": "Alpha", "admin": b"\x07" * 20, "minimal_deposit": 5},
        )
        row = _to_row(change)
        assert row["fields"]["admin"] == "0x" + "07" * 20
        assert _from_row(PoolConfigChange, row) == change

    def test_query_rows_are_jsonable(self):
        row = {"key": memoryview(b"\xab\xcd"), "total_staked": Decimal(10**30), "name": "p"}
        assert _jsonable(row) == {"key": "0xabcd", "total_staked": str(10**30), "name": "p"}

    def test_limit_clamp(self):
        assert _clamp(5) == 5
        assert _clamp(10_000) == 1000
        with pytest.raises(ValueError):
            _clamp(0)


class TestSessionStatements:
    """Statements issued by the SQL session, checked without a server."""

    @pytest.mark.asyncio
    async def test_append_conflict_is_duplicate(self):
        conn = RecordingConnection([])
        session = SqlAlchemySession(conn)
        record = RECORD_TYPES[RecordKind.SUBNET_DEPLOYMENT](
            key=KEY, chain_id=1, block_number=2, log_index=0, block_timestamp=4, transaction_hash=TX,
            subnet=b"\x08" * 20, factory_address=b"\x09" * 20, creator=b"\x0a" * 20,
        )
        with pytest.raises(DuplicateInteraction):
            await session.append(RecordKind.SUBNET_DEPLOYMENT, record)
        assert "ON CONFLICT" in conn.statements[0]
        assert "DO NOTHING" in conn.statements[0]

    @pytest.mark.asyncio
    async def test_apply_delta_is_a_single_update(self):
        user = User(key=b"\x01" * 104, pool_key=b"\x01" * 84, chain_id=1, address=b"\x02" * 20, claimed=9)
        conn = RecordingConnection([_to_row(user)])
        session = SqlAlchemySession(conn)

        updated = await session.apply_delta(EntityKind.USER, user.key, {"claimed": 9})

        assert updated == user
        assert conn.statements[0].startswith("UPDATE domain.users SET claimed=")
        assert "domain.users.claimed +" in conn.statements[0]

    @pytest.mark.asyncio
    async def test_set_fields_missing_row(self):
        session = SqlAlchemySession(RecordingConnection([]))
        with pytest.raises(EntityNotFound):
            await session.set_fields(EntityKind.USER, b"\x01" * 104, {"staked": 1})

    @pytest.mark.asyncio
    async def test_counter_delta_uses_greatest_timestamp(self):
        counters = GlobalCounters(total_subnets=1, last_updated=50)
        conn = RecordingConnection([], [_to_row(counters)])
        session = SqlAlchemySession(conn)

        result = await session.apply_counter_delta(CounterDelta(subnets=1, timestamp=40))

        assert result == counters
        assert "DO NOTHING" in conn.statements[0]
        assert "greatest(" in conn.statements[1]
