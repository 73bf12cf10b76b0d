"""
The operand Stack and the MemoryRegion.

Stack: 1024-depth, 256-bit (uint256) values.
Memory: byte-addressable, expands in 32-byte words, priced before it grows.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from evmregions.common.words import UINT256_MAX, WORD_SIZE, ceil32
from evmregions.vm.errors import OutOfGas, StackOverflow, StackUnderflow
from evmregions.vm.gas import GasAccountant, MemoryCostSchedule, WORD_SCHEDULE

logger = logging.getLogger(__name__)

MAX_STACK_DEPTH = 1024

# Reserved memory layout
FREE_POINTER_OFFSET = 0x40
FREE_MEMORY_START = 0x80


def _check_word(value: int) -> int:
    if not 0 <= value <= UINT256_MAX:
        raise ValueError(f"Value out of uint256 range: {value}")
    return value


class Stack:
    """Operand stack: max 1024 items, each item is a 256-bit unsigned integer."""

    __slots__ = ("_data", "_max_depth")

    def __init__(self, max_depth: int = MAX_STACK_DEPTH) -> None:
        self._data: list[int] = []
        self._max_depth = max_depth

    def push(self, value: int) -> None:
        if len(self._data) >= self._max_depth:
            raise StackOverflow(f"Stack overflow (max {self._max_depth})", depth=len(self._data))
        self._data.append(_check_word(value))

    def pop(self) -> int:
        if not self._data:
            raise StackUnderflow("Stack underflow", depth=0, requested=1)
        return self._data.pop()

    def peek(self, depth: int = 0) -> int:
        if depth >= len(self._data):
            raise StackUnderflow(
                f"Stack underflow: peek({depth})", depth=len(self._data), requested=depth + 1
            )
        return self._data[-(depth + 1)]

    def swap(self, depth: int) -> None:
        """Swap top with item at depth (1-indexed: SWAP1 uses depth=1)."""
        if depth < 1:
            raise ValueError(f"swap depth must be >= 1, got {depth}")
        if depth >= len(self._data):
            raise StackUnderflow(
                f"Stack underflow: swap({depth})", depth=len(self._data), requested=depth + 1
            )
        idx = -(depth + 1)
        self._data[-1], self._data[idx] = self._data[idx], self._data[-1]

    def dup(self, depth: int) -> None:
        """Duplicate item at depth (1-indexed: DUP1 uses depth=1)."""
        if depth < 1:
            raise ValueError(f"dup depth must be >= 1, got {depth}")
        if depth > len(self._data):
            raise StackUnderflow(
                f"Stack underflow: dup({depth})", depth=len(self._data), requested=depth
            )
        if len(self._data) >= self._max_depth:
            raise StackOverflow("Stack overflow on DUP", depth=len(self._data))
        self._data.append(self._data[-depth])

    def clear(self) -> None:
        self._data.clear()

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)


ExpansionCallback = Callable[[int, int, int], None]


class MemoryRegion:
    """Transient memory: byte-addressable, expands in 32-byte word increments.

    Every access that moves the high-water mark is priced through the
    accountant first; a failed charge leaves the buffer untouched.
    """

    __slots__ = ("_data", "_gas", "_schedule", "_free_memory_start", "on_expand")

    def __init__(
        self,
        gas: Optional[GasAccountant] = None,
        schedule: MemoryCostSchedule = WORD_SCHEDULE,
        free_memory_start: int = FREE_MEMORY_START,
    ) -> None:
        self._data = bytearray()
        self._gas = gas
        self._schedule = schedule
        self._free_memory_start = free_memory_start
        # (old_size, new_size, cost)
        self.on_expand: Optional[ExpansionCallback] = None

    @property
    def high_water_mark(self) -> int:
        return len(self._data)

    @property
    def size(self) -> int:
        return len(self._data)

    def expansion_cost(self, offset: int, size: int) -> int:
        """Gas an access at [offset, offset+size) would charge right now."""
        if size == 0:
            return 0
        return self._schedule.expansion_cost(
            len(self._data) // WORD_SIZE, ceil32(offset + size) // WORD_SIZE
        )

    def _expand(self, offset: int, size: int) -> None:
        """Charge for and expand memory to cover [offset, offset+size)."""
        if offset < 0 or size < 0:
            raise ValueError(f"Negative memory access: offset={offset}, size={size}")
        if size == 0:
            return
        end = offset + size
        if end <= len(self._data):
            return
        cost = self.expansion_cost(offset, size)
        if self._gas is not None:
            try:
                self._gas.charge(cost, reason="memory expansion")
            except OutOfGas as exc:
                raise OutOfGas(
                    f"Out of gas expanding memory to {ceil32(end)} bytes: "
                    f"need {exc.needed}, have {exc.remaining}",
                    needed=exc.needed,
                    remaining=exc.remaining,
                    offset=offset,
                    size=size,
                ) from exc
        old_size = len(self._data)
        # Expand to next 32-byte boundary
        new_size = ceil32(end)
        self._data.extend(b"\x00" * (new_size - old_size))
        logger.debug("Memory expanded %d -> %d bytes (cost %d)", old_size, new_size, cost)
        if self.on_expand is not None:
            self.on_expand(old_size, new_size, cost)

    def read(self, offset: int, size: int) -> bytes:
        """Read `size` bytes from memory starting at `offset`."""
        if size == 0:
            return b""
        self._expand(offset, size)
        return bytes(self._data[offset : offset + size])

    def write(self, offset: int, data: bytes) -> None:
        """Write bytes to memory at offset."""
        if len(data) == 0:
            return
        self._expand(offset, len(data))
        self._data[offset : offset + len(data)] = data

    def load(self, offset: int) -> int:
        """Load a 32-byte word as uint256."""
        return int.from_bytes(self.read(offset, WORD_SIZE), "big")

    def store(self, offset: int, value: int) -> None:
        """Store a uint256 as 32 bytes at offset."""
        self.write(offset, _check_word(value).to_bytes(WORD_SIZE, "big"))

    def store8(self, offset: int, value: int) -> None:
        """Store a single byte at offset."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Byte value out of range: {value}")
        self._expand(offset, 1)
        self._data[offset] = value

    def word_at(self, index: int) -> int:
        """Raw word at index * 32, without charging or expanding.

        Bytes beyond the high-water mark read as zero.
        """
        if index < 0:
            raise ValueError(f"Negative word index: {index}")
        start = index * WORD_SIZE
        chunk = bytes(self._data[start : start + WORD_SIZE])
        return int.from_bytes(chunk.ljust(WORD_SIZE, b"\x00"), "big")

    # -- Free pointer allocator --

    @property
    def free_pointer(self) -> int:
        """Next unused offset, as recorded in the reserved pointer word."""
        value = self.word_at(FREE_POINTER_OFFSET // WORD_SIZE)
        return value if value else self._free_memory_start

    def allocate(self, size: int) -> int:
        """Reserve ceil32(size) bytes and return their base offset.

        Only the pointer word is written; the allocated bytes themselves
        are priced when they are first touched.
        """
        if size < 0:
            raise ValueError(f"Negative allocation size: {size}")
        base = self.free_pointer
        self.store(FREE_POINTER_OFFSET, base + ceil32(size))
        logger.debug("Allocated %d bytes at %s", size, hex(base))
        return base

    def clear(self) -> None:
        self._data = bytearray()
