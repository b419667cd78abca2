from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_DEFAULT_LIMIT = 100
_MAX_LIMIT = 1000


def _jsonable(row: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in row.items():
        if isinstance(value, memoryview):
            value = value.tobytes()
        if isinstance(value, (bytes, bytearray)):
            value = "0x" + bytes(value).hex()
        elif isinstance(value, Decimal):
            # uint256 values are returned as decimal strings
            value = str(int(value))
        out[name] = value
    return out


def _clamp(limit: int) -> int:
    if limit <= 0:
        raise ValueError("limit must be positive")
    return min(limit, _MAX_LIMIT)


class SqlAlchemyStakingQueries:
    """
    Read-only projections over domain.* / journal.* for the query layer.

    Every method returns plain JSON-ready dicts: bytes as 0x-hex, uint256 as
    decimal strings. Reads happen in a single statement, so a caller never
    sees a pool without the interaction that produced it.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def stats(self) -> dict[str, Any]:
        sql = text(
            """
            SELECT
                g.total_pools,
                g.total_users,
                g.total_users_across_pools,
                g.total_staked,
                g.total_subnets,
                g.last_updated,
                COALESCE((SELECT SUM(u.claimed) FROM domain.users u), 0) AS total_claimed
            FROM domain.global_counters g
            WHERE g.id = 'global'
            """
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(sql)).mappings().one_or_none()

        if row is None:
            return {
                "total_pools": 0,
                "total_users": 0,
                "total_users_across_pools": 0,
                "total_staked": "0",
                "total_subnets": 0,
                "last_updated": 0,
                "total_claimed": "0",
            }
        return _jsonable(row)

    async def pools(
        self,
        *,
        chain_id: int | None = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT
                key, chain_id, contract_address, pool_id,
                name, admin, slug, description, website, image,
                minimal_deposit, withdraw_lock_period_after_deposit,
                claim_lock_end, starts_at,
                total_staked, total_users, total_claimed,
                created_at_block, created_at_timestamp
            FROM domain.pools
            WHERE (CAST(:chain_id AS INTEGER) IS NULL OR chain_id = :chain_id)
            ORDER BY total_staked DESC, key
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"chain_id": chain_id, "limit": _clamp(limit), "offset": offset})

    async def pool_users(
        self,
        *,
        pool_key: bytes,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT
                key, pool_key, chain_id, address,
                staked, claimed, last_stake_timestamp, last_deposit_amount,
                virtual_deposited, claim_lock_start
            FROM domain.users
            WHERE pool_key = :pool_key
            ORDER BY staked DESC, key
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"pool_key": pool_key, "limit": _clamp(limit), "offset": offset})

    async def users(
        self,
        *,
        chain_id: int | None = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT key, pool_key, chain_id, address, staked, claimed
            FROM domain.users
            WHERE (CAST(:chain_id AS INTEGER) IS NULL OR chain_id = :chain_id)
            ORDER BY staked DESC, key
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"chain_id": chain_id, "limit": _clamp(limit), "offset": offset})

    async def interactions(
        self,
        *,
        user_key: bytes | None = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Newest first; all users when user_key is None."""
        sql = text(
            """
            SELECT
                key, chain_id, block_number, log_index, block_timestamp,
                transaction_hash, type, amount, pool_key, user_key,
                user_address, counterparty, balance_after, low_fidelity
            FROM journal.interactions
            WHERE (CAST(:user_key AS BYTEA) IS NULL OR user_key = :user_key)
            ORDER BY block_timestamp DESC, chain_id, block_number DESC, log_index DESC
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"user_key": user_key, "limit": _clamp(limit), "offset": offset})

    async def referrals(
        self,
        *,
        pool_key: bytes | None = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT key, pool_key, chain_id, referral_address, referrer_address, amount
            FROM domain.referrals
            WHERE (CAST(:pool_key AS BYTEA) IS NULL OR pool_key = :pool_key)
            ORDER BY amount DESC, key
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"pool_key": pool_key, "limit": _clamp(limit), "offset": offset})

    async def referrers(
        self,
        *,
        pool_key: bytes | None = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT key, pool_key, chain_id, address, claimed
            FROM domain.referrers
            WHERE (CAST(:pool_key AS BYTEA) IS NULL OR pool_key = :pool_key)
            ORDER BY claimed DESC, key
            LIMIT :limit OFFSET :offset
            """
        )
        return await self._fetch(sql, {"pool_key": pool_key, "limit": _clamp(limit), "offset": offset})

    async def checkpoints(self) -> list[dict[str, Any]]:
        sql = text(
            """
            SELECT chain_id, block_number, log_index
            FROM domain.chain_checkpoints
            ORDER BY chain_id
            """
        )
        return await self._fetch(sql, {})

    async def _fetch(self, sql: Any, params: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._engine.connect() as conn:
            result = await conn.execute(sql, params)
            rows = result.mappings().all()
        logger.debug("Query returned %s rows", len(rows))
        return [_jsonable(r) for r in rows]
