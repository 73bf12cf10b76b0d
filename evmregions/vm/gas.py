"""
Gas cost model.

Covers memory expansion schedules, the running gas accountant, and
EIP-2929 warm/cold storage access pricing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from evmregions.vm.errors import OutOfGas

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base gas costs (Berlin+)
# ---------------------------------------------------------------------------

G_MEMORY = 3
G_WARM_ACCESS = 100         # EIP-2929
G_COLD_SLOAD = 2100         # EIP-2929
G_SSET = 20000
G_SRESET = 2900             # EIP-2929: 5000 - 2100
R_SCLEAR = 4800             # EIP-3529


# ---------------------------------------------------------------------------
# Memory expansion cost
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemoryCostSchedule:
    """Quadratic memory pricing: linear * n + n^2 // quadratic_divisor.

    `n` is the covered size measured in `unit` bytes (1 word = 32 bytes,
    so unit=1 prices per word and unit=32 prices per byte).
    """

    name: str
    unit: int
    linear: int
    quadratic_divisor: int

    def total_cost(self, word_size: int) -> int:
        """Cumulative cost of a region covering `word_size` words."""
        n = word_size * self.unit
        return self.linear * n + (n * n) // self.quadratic_divisor

    def expansion_cost(self, current_word_size: int, new_word_size: int) -> int:
        """Incremental cost (new total - old total) of growing the region."""
        if new_word_size <= current_word_size:
            return 0
        return self.total_cost(new_word_size) - self.total_cost(current_word_size)


# 3*words + words^2/512
WORD_SCHEDULE = MemoryCostSchedule(name="word", unit=1, linear=G_MEMORY, quadratic_divisor=512)

# Byte-based variant: 3*bytes + bytes^2/32 (32 bytes -> 128, 64 bytes -> 320)
BYTE_SCHEDULE = MemoryCostSchedule(name="byte", unit=32, linear=G_MEMORY, quadratic_divisor=32)

MEMORY_SCHEDULES: dict[str, MemoryCostSchedule] = {
    WORD_SCHEDULE.name: WORD_SCHEDULE,
    BYTE_SCHEDULE.name: BYTE_SCHEDULE,
}


# ---------------------------------------------------------------------------
# Gas accountant
# ---------------------------------------------------------------------------

class GasAccountant:
    """Running gas counter with a fixed ceiling."""

    __slots__ = ("limit", "used", "refund")

    def __init__(self, limit: int) -> None:
        if limit < 0:
            raise ValueError(f"Gas limit must be >= 0, got {limit}")
        self.limit = limit
        self.used = 0
        self.refund = 0

    def charge(self, amount: int, reason: str = "") -> None:
        """Consume gas, raising OutOfGas if insufficient.

        A failed charge leaves the counter unchanged.
        """
        if amount < 0:
            raise ValueError(f"Cannot charge negative gas: {amount}")
        remaining = self.limit - self.used
        if amount > remaining:
            logger.debug("Out of gas (%s): need %d, have %d", reason or "charge", amount, remaining)
            raise OutOfGas(
                f"Out of gas: need {amount}, have {remaining}",
                needed=amount,
                remaining=remaining,
            )
        self.used += amount

    def remaining(self) -> int:
        return self.limit - self.used

    def add_refund(self, amount: int) -> None:
        self.refund += amount

    def snapshot(self) -> tuple[int, int]:
        return self.used, self.refund

    def restore(self, snap: tuple[int, int]) -> None:
        """Restore the refund counter; gas already burnt stays burnt."""
        self.refund = snap[1]


# ---------------------------------------------------------------------------
# EIP-2929 Access lists (warm/cold tracking)
# ---------------------------------------------------------------------------

class AccessSets:
    """Track warm/cold state for storage slots (EIP-2929)."""

    def __init__(self) -> None:
        self.warm_storage: set[int] = set()

    def is_warm_storage(self, slot: int) -> bool:
        return slot in self.warm_storage

    def mark_warm_storage(self, slot: int) -> bool:
        """Mark storage slot as warm. Returns True if it was already warm."""
        was_warm = slot in self.warm_storage
        self.warm_storage.add(slot)
        return was_warm

    def snapshot(self) -> frozenset[int]:
        return frozenset(self.warm_storage)

    def restore(self, snap: frozenset[int]) -> None:
        self.warm_storage = set(snap)


def sload_gas(is_warm: bool) -> int:
    return G_WARM_ACCESS if is_warm else G_COLD_SLOAD


# ---------------------------------------------------------------------------
# SSTORE gas (EIP-2200 + EIP-3529)
# ---------------------------------------------------------------------------

def sstore_gas(
    current_value: int,
    new_value: int,
    original_value: int,
    is_warm: bool,
) -> tuple[int, int]:
    """Calculate SSTORE gas cost and refund (EIP-2200 / EIP-3529).

    Returns (gas_cost, refund_delta).
    """
    warm_cost = 0 if is_warm else G_COLD_SLOAD

    if current_value == new_value:
        return G_WARM_ACCESS + warm_cost, 0

    refund = 0

    if original_value == current_value:
        # Slot hasn't been changed yet in this context
        if original_value == 0:
            return G_SSET + warm_cost, 0
        if new_value == 0:
            refund = R_SCLEAR
        return G_SRESET + warm_cost, refund

    # Slot was already changed
    gas = G_WARM_ACCESS + warm_cost

    if original_value != 0:
        if current_value == 0:
            refund -= R_SCLEAR
        elif new_value == 0:
            refund += R_SCLEAR

    if original_value == new_value:
        if original_value == 0:
            refund += G_SSET - G_WARM_ACCESS
        else:
            refund += G_SRESET - G_WARM_ACCESS

    return gas, refund


def get_memory_schedule(name: str) -> MemoryCostSchedule:
    try:
        return MEMORY_SCHEDULES[name]
    except KeyError:
        raise ValueError(f"Unknown memory schedule: {name!r}") from None

