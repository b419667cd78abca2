from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from staking_indexer.app.domain.errors import ConfigurationMissing, UnknownEvent
from staking_indexer.app.domain.events import ContractFamily
from staking_indexer.app.domain.keys import as_address

logger = logging.getLogger(__name__)

_ZERO_ADDRESS_20B = b"\x00" * 20


@dataclass(frozen=True)
class ContractSpec:
    """One indexed contract deployment on one chain."""

    name: str
    family: ContractFamily
    chain_id: int
    address: bytes
    start_block: int = 0


class ContractRegistry:
    """
    Registry of indexed contracts keyed by (chain_id, contract name).

    The same logical contract (e.g. "Builders") may be deployed on several
    chains; each deployment is a separate spec. Validation runs once at
    construction so misconfiguration fails at startup, not per event.
    """

    def __init__(self, specs: Iterable[ContractSpec]) -> None:
        self._specs: dict[tuple[int, str], ContractSpec] = {}
        for spec in specs:
            k = (spec.chain_id, spec.name)
            if k in self._specs:
                raise ValueError(f"Duplicate contract {spec.name!r} on chain_id={spec.chain_id}")
            self._specs[k] = spec
        self._validate()

    @classmethod
    def from_config(cls, entries: Iterable[dict]) -> ContractRegistry:
        specs: list[ContractSpec] = []
        for e in entries:
            raw_address = e.get("address")
            if not raw_address:
                raise ConfigurationMissing(
                    f"Contract {e.get('name')!r} on chain_id={e.get('chain_id')} has no address"
                )
            specs.append(
                ContractSpec(
                    name=e["name"],
                    family=ContractFamily(e["family"]),
                    chain_id=int(e["chain_id"]),
                    address=as_address(raw_address),
                    start_block=int(e.get("start_block", 0)),
                )
            )
        return cls(specs)

    def get(self, *, chain_id: int, name: str) -> ContractSpec:
        try:
            return self._specs[(chain_id, name)]
        except KeyError:
            raise UnknownEvent(f"Contract {name!r} is not registered on chain_id={chain_id}")

    def staking_addresses(self, chain_id: int) -> frozenset[bytes]:
        return frozenset(
            s.address
            for s in self._specs.values()
            if s.chain_id == chain_id and s.family.is_staking
        )

    @property
    def chain_ids(self) -> list[int]:
        return sorted({s.chain_id for s in self._specs.values()})

    def __iter__(self):
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def _validate(self) -> None:
        for spec in self._specs.values():
            if spec.address == _ZERO_ADDRESS_20B:
                raise ConfigurationMissing(
                    f"Contract {spec.name!r} on chain_id={spec.chain_id} is configured "
                    "with the zero address"
                )

        # Transfers are classified against staking contract addresses; refuse to
        # run a token contract on a chain where that set is empty.
        for spec in self._specs.values():
            if spec.family is ContractFamily.TOKEN and not self.staking_addresses(spec.chain_id):
                raise ConfigurationMissing(
                    f"Token contract {spec.name!r} on chain_id={spec.chain_id} has no staking "
                    "contract address to classify transfers against"
                )

        logger.info(
            "Contract registry loaded",
            extra={"contracts": len(self._specs), "chains": self.chain_ids},
        )
