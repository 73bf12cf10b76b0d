"""
Model configuration.

Budgets, limits and pluggable rules for one execution context.
"""

from __future__ import annotations

from dataclasses import dataclass

from evmregions.common.crypto import HASH_FUNCTIONS, HashFunction, get_hash_function


DEFAULT_GAS_LIMIT = 30_000_000
DEFAULT_MAX_STACK_DEPTH = 1024
DEFAULT_FREE_MEMORY_START = 0x80

MEMORY_SCHEDULES = ("word", "byte")


class ConfigError(ValueError):
    """Invalid model configuration."""
    pass


@dataclass
class ModelConfig:
    gas_limit: int = DEFAULT_GAS_LIMIT
    max_stack_depth: int = DEFAULT_MAX_STACK_DEPTH

    # "word": 3*w + w^2/512, "byte": 3*b + b^2/32
    memory_schedule: str = "word"
    hash_function: str = "keccak256"

    # First byte handed out by the free-pointer allocator
    free_memory_start: int = DEFAULT_FREE_MEMORY_START

    # Warm/cold SLOAD and SSTORE pricing (off by default)
    price_storage: bool = False

    # Roll storage back to the call-entry snapshot when a call fails
    revert_storage_on_failure: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.gas_limit < 0:
            raise ConfigError(f"gas_limit must be >= 0, got {self.gas_limit}")
        if not 0 < self.max_stack_depth <= DEFAULT_MAX_STACK_DEPTH:
            raise ConfigError(
                f"max_stack_depth must be in 1..{DEFAULT_MAX_STACK_DEPTH}, "
                f"got {self.max_stack_depth}"
            )
        if self.memory_schedule not in MEMORY_SCHEDULES:
            raise ConfigError(f"Unknown memory schedule: {self.memory_schedule!r}")
        if self.hash_function not in HASH_FUNCTIONS:
            raise ConfigError(f"Unknown hash function: {self.hash_function!r}")
        if self.free_memory_start < 0x60 or self.free_memory_start % 32:
            raise ConfigError(
                f"free_memory_start must be word aligned and >= 0x60, "
                f"got {hex(self.free_memory_start)}"
            )

    @property
    def hasher(self) -> HashFunction:
        return get_hash_function(self.hash_function)

    @classmethod
    def from_json(cls, data: dict) -> ModelConfig:
        """Build a config from a JSON-style dict (hex strings or ints)."""

        def parse_int(val: str | int, name: str) -> int:
            if isinstance(val, bool):
                raise ConfigError(f"{name} must be an integer")
            if isinstance(val, int):
                return val
            if isinstance(val, str):
                try:
                    return int(val, 16) if val.startswith("0x") else int(val)
                except ValueError:
                    raise ConfigError(f"{name}: cannot parse {val!r}") from None
            raise ConfigError(f"{name} must be an integer, got {type(val).__name__}")

        known = {
            "gasLimit": "gas_limit",
            "maxStackDepth": "max_stack_depth",
            "memorySchedule": "memory_schedule",
            "hashFunction": "hash_function",
            "freeMemoryStart": "free_memory_start",
            "priceStorage": "price_storage",
            "revertStorageOnFailure": "revert_storage_on_failure",
        }
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        kwargs: dict = {}
        for key, attr in known.items():
            if key not in data:
                continue
            val = data[key]
            if attr in ("gas_limit", "max_stack_depth", "free_memory_start"):
                kwargs[attr] = parse_int(val, key)
            elif attr in ("price_storage", "revert_storage_on_failure"):
                if not isinstance(val, bool):
                    raise ConfigError(f"{key} must be a boolean")
                kwargs[attr] = val
            else:
                kwargs[attr] = str(val)
        return cls(**kwargs)


DEFAULT_CONFIG = ModelConfig()
