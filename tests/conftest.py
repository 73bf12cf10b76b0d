"""Pytest configuration and shared fixtures for all tests."""

import pytest

from evmregions.common.config import ModelConfig
from evmregions.vm.context import ExecutionContext
from evmregions.vm.gas import GasAccountant
from evmregions.vm.memory import MemoryRegion
from evmregions.vm.storage import StorageMap


# =============================================================================
# Well-known hashes
# =============================================================================

# keccak256(uint256(0)) and keccak256(uint256(1))
KECCAK_SLOT_0 = 0x290DECD9548B62A8D60345A988386FC84BA6BC95484008F6362F93160EF3E563
KECCAK_SLOT_1 = 0xB10E2D527612073B26EECDFD717E6A320CF44B4AFAC2B0732D9FCBE2B7FA0CF6


# =============================================================================
# Region fixtures
# =============================================================================

@pytest.fixture
def config():
    """Default model configuration."""
    return ModelConfig()


@pytest.fixture
def ctx(config):
    """Fresh execution context with the default configuration."""
    return ExecutionContext(config=config)


@pytest.fixture
def storage():
    """Unpriced storage map using keccak256."""
    return StorageMap()


@pytest.fixture
def gas():
    """Accountant with a small budget."""
    return GasAccountant(1000)


@pytest.fixture
def memory(gas):
    """Memory region charged to the `gas` fixture."""
    return MemoryRegion(gas=gas)
