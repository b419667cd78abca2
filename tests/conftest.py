import pytest

from helpers import CONTRACTS, FakeStateReader, World
from staking_indexer.app.application.services.contract_registry import ContractRegistry
from staking_indexer.app.application.services.projector import MissingEntityPolicy


@pytest.fixture
def registry() -> ContractRegistry:
    return ContractRegistry.from_config(CONTRACTS)


@pytest.fixture
def reader() -> FakeStateReader:
    return FakeStateReader()


@pytest.fixture
def world(reader: FakeStateReader) -> World:
    return World(reader=reader)


@pytest.fixture
def lenient_world(reader: FakeStateReader) -> World:
    return World(reader=reader, policy=MissingEntityPolicy.SYNTHESIZE)
