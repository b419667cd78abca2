from __future__ import annotations


class IndexerError(Exception):
    """Base class for errors raised by the materialization pipeline."""


class EntityNotFound(IndexerError):
    """
    An event references a Pool/User/Referrer that is absent from the store.

    Usually means an upstream event was missed. Fatal in strict mode.
    """

    def __init__(self, kind: str, key: bytes) -> None:
        super().__init__(f"{kind} not found: 0x{key.hex()}")
        self.kind = kind
        self.key = key


class DuplicateInteraction(IndexerError):
    """
    A journal record with the same event key already exists.

    Delivery is at-least-once, so callers treat this as a successful no-op.
    """

    def __init__(self, key: bytes) -> None:
        super().__init__(f"event already processed: 0x{key.hex()}")
        self.key = key


class BalanceReadFailure(IndexerError):
    """The on-chain state read failed or timed out after all retries."""


class RollbackInconsistency(IndexerError):
    """Recomputation found a record pointing at a pool/user that does not exist."""


class ConfigurationMissing(IndexerError):
    """A required address or parameter is unset or zero."""


class UnknownEvent(IndexerError):
    """Delivered (contract, event) pair is not part of the configured registry."""
