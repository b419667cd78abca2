"""
Identity codec.

Composite keys are ABI-packed concatenations of fixed-width fields, so two
different field tuples of the same kind can never produce the same bytes:

    pool      uint256 chain_id | address contract | bytes32 pool_id      (84 bytes)
    user      pool key         | address user                            (104 bytes)
    referrer  same layout as user (a referrer row shares its user's key)
    referral  pool key         | address referral | address referrer     (124 bytes)
    event     uint256 chain_id | bytes32 tx_hash  | uint32 log_index     (68 bytes)
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from eth_abi.packed import encode_packed
from eth_utils import is_hex, to_bytes, to_canonical_address

_ADDRESS_LEN = 20
_WORD_LEN = 32
_POOL_KEY_LEN = 84
_MAX_UINT32 = 2**32 - 1


class KeyKind(str, Enum):
    POOL = "pool"
    USER = "user"
    REFERRER = "referrer"
    REFERRAL = "referral"
    EVENT = "event"


# -----------------------------------------------------------------------------
# Field normalization
# -----------------------------------------------------------------------------
def as_address(value: Any) -> bytes:
    """Normalize an address given as 0x-hex or raw bytes into 20 bytes."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        b = bytes(value)
        if len(b) == _WORD_LEN and b[:12] == b"\x00" * 12:
            # indexed address kept as a 32-byte topic
            b = b[12:]
        if len(b) != _ADDRESS_LEN:
            raise ValueError(f"Expected 20-byte address, got len={len(b)}")
        return b
    if isinstance(value, str):
        return to_canonical_address(value)
    raise TypeError(f"Unsupported address value: {value!r}")


def as_bytes32(value: Any) -> bytes:
    """Normalize a bytes32 value (tx hash, pool id) given as 0x-hex, bytes or int."""
    if isinstance(value, int):
        if value < 0:
            raise ValueError("bytes32 integer value must be non-negative")
        return value.to_bytes(_WORD_LEN, byteorder="big", signed=False)
    if isinstance(value, str):
        if not is_hex(value):
            raise ValueError(f"Expected hex string, got {value!r}")
        b = to_bytes(hexstr=value)
    elif isinstance(value, (bytes, bytearray, memoryview)):
        b = bytes(value)
    else:
        raise TypeError(f"Unsupported bytes32 value: {value!r}")
    if len(b) != _WORD_LEN:
        raise ValueError(f"Expected 32 bytes, got len={len(b)}")
    return b


def pool_id_from_index(index: int) -> bytes:
    """Deposit pools identify sub-pools by a uint256 index; store it as bytes32."""
    return as_bytes32(int(index))


# -----------------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------------
def pool_key(chain_id: int, contract_address: Any, pool_id: Any) -> bytes:
    return encode_packed(
        ["uint256", "address", "bytes32"],
        [chain_id, as_address(contract_address), as_bytes32(pool_id)],
    )


def user_key(pool_key_: bytes, address: Any) -> bytes:
    _check_pool_key(pool_key_)
    return pool_key_ + as_address(address)


def referrer_key(pool_key_: bytes, address: Any) -> bytes:
    return user_key(pool_key_, address)


def referral_key(pool_key_: bytes, referral: Any, referrer: Any) -> bytes:
    _check_pool_key(pool_key_)
    return pool_key_ + as_address(referral) + as_address(referrer)


def event_key(chain_id: int, transaction_hash: Any, log_index: int) -> bytes:
    if not 0 <= log_index <= _MAX_UINT32:
        raise ValueError(f"log_index out of range: {log_index}")
    return encode_packed(
        ["uint256", "bytes32", "uint32"],
        [chain_id, as_bytes32(transaction_hash), log_index],
    )


def chain_id_of_pool_key(pool_key_: bytes) -> int:
    _check_pool_key(pool_key_)
    return int.from_bytes(pool_key_[:_WORD_LEN], byteorder="big")


def derive_key(kind: KeyKind, *fields: Any) -> bytes:
    """Single entry point over the typed key builders above."""
    builders = {
        KeyKind.POOL: pool_key,
        KeyKind.USER: user_key,
        KeyKind.REFERRER: referrer_key,
        KeyKind.REFERRAL: referral_key,
        KeyKind.EVENT: event_key,
    }
    try:
        builder = builders[kind]
    except KeyError:
        raise ValueError(f"Unsupported key kind: {kind!r}")
    return builder(*fields)


def _check_pool_key(pool_key_: bytes) -> None:
    if len(pool_key_) != _POOL_KEY_LEN:
        raise ValueError(f"Expected {_POOL_KEY_LEN}-byte pool key, got len={len(pool_key_)}")
