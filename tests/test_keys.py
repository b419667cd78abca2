"""
Identity codec tests.

Keys must be deterministic, fixed-width and collision-free across field tuples.
"""

import pytest

from staking_indexer.app.domain.keys import (
    KeyKind,
    as_address,
    as_bytes32,
    chain_id_of_pool_key,
    derive_key,
    event_key,
    pool_id_from_index,
    pool_key,
    referral_key,
    referrer_key,
    user_key,
)

CONTRACT = "0x47176B2Af9885dC6C4575d4eFd63895f7Aaa4790"
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
TX = "0x" + "ab" * 32


class TestNormalization:
    """Addresses and bytes32 values accepted in several encodings."""

    def test_checksummed_and_lowercase_address_match(self):
        assert as_address(CONTRACT) == as_address(CONTRACT.lower())
        assert len(as_address(CONTRACT)) == 20

    def test_padded_topic_address_is_unwrapped(self):
        raw = as_address(ALICE)
        assert as_address(b"\x00" * 12 + raw) == raw

    def test_wrong_length_address_rejected(self):
        with pytest.raises(ValueError):
            as_address(b"\x01" * 19)

    def test_bytes32_from_int(self):
        assert as_bytes32(1) == b"\x00" * 31 + b"\x01"
        assert pool_id_from_index(3) == as_bytes32(3)

    def test_bytes32_rejects_short_hex(self):
        with pytest.raises(ValueError):
            as_bytes32("0x1234")

    def test_bytes32_rejects_negative_int(self):
        with pytest.raises(ValueError):
            as_bytes32(-1)


class TestCompositeKeys:
    """Fixed-width packing of the composite identities."""

    def test_lengths(self):
        pk = pool_key(1, CONTRACT, pool_id_from_index(0))
        assert len(pk) == 84
        assert len(user_key(pk, ALICE)) == 104
        assert len(referrer_key(pk, ALICE)) == 104
        assert len(referral_key(pk, ALICE, BOB)) == 124
        assert len(event_key(1, TX, 7)) == 68

    def test_deterministic(self):
        assert pool_key(1, CONTRACT, 0) == pool_key(1, CONTRACT.lower(), pool_id_from_index(0))
        assert event_key(42161, TX, 3) == event_key(42161, bytes.fromhex("ab" * 32), 3)

    def test_distinct_tuples_give_distinct_keys(self):
        keys = {
            pool_key(1, CONTRACT, 0),
            pool_key(42161, CONTRACT, 0),
            pool_key(1, CONTRACT, 1),
            pool_key(1, ALICE, 0),
        }
        assert len(keys) == 4

    def test_chain_id_distinguishes_event_keys(self):
        assert event_key(1, TX, 0) != event_key(8453, TX, 0)
        assert event_key(1, TX, 0) != event_key(1, TX, 1)

    def test_referral_direction_matters(self):
        pk = pool_key(1, CONTRACT, 0)
        assert referral_key(pk, ALICE, BOB) != referral_key(pk, BOB, ALICE)

    def test_user_key_starts_with_pool_key(self):
        pk = pool_key(1, CONTRACT, 0)
        assert user_key(pk, ALICE)[:84] == pk
        assert chain_id_of_pool_key(pk) == 1

    def test_user_key_requires_pool_key(self):
        with pytest.raises(ValueError):
            user_key(b"\x00" * 10, ALICE)

    def test_log_index_out_of_range(self):
        with pytest.raises(ValueError):
            event_key(1, TX, 2**32)
        with pytest.raises(ValueError):
            event_key(1, TX, -1)

    def test_derive_key_dispatches(self):
        pk = derive_key(KeyKind.POOL, 1, CONTRACT, 0)
        assert pk == pool_key(1, CONTRACT, 0)
        assert derive_key(KeyKind.REFERRAL, pk, ALICE, BOB) == referral_key(pk, ALICE, BOB)
        assert derive_key(KeyKind.EVENT, 1, TX, 2) == event_key(1, TX, 2)
