"""
Probe interfaces for layout validation.

Thin in-process entry points a harness uses to check exact memory
offsets, storage slot placement, slot hashing and ABI decoding.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from eth_utils import decode_hex

from evmregions.common.config import ModelConfig
from evmregions.common.words import WORD_SIZE
from evmregions.vm.abi import AbiType
from evmregions.vm.calldata import CallDataView
from evmregions.vm.context import ExecutionContext
from evmregions.vm.storage import StorageMap, hash_slot


def allocate_uint_array(ctx: ExecutionContext, values: Sequence[int]) -> int:
    """Lay out a dynamic uint array in memory: length word, then elements.

    Returns the offset of the length word.
    """
    base = ctx.memory.allocate(WORD_SIZE * (len(values) + 1))
    ctx.memory.store(base, len(values))
    for i, value in enumerate(values):
        ctx.memory.store(base + WORD_SIZE * (i + 1), value)
    return base


def probe_memory(length: int, index: int, config: Optional[ModelConfig] = None) -> int:
    """Word at index * 32 after allocating a `length`-element array.

    Element i holds 2 * (i + 1); a length-2 array is [2, 4].
    """
    if length < 0 or index < 0:
        raise ValueError(f"length and index must be >= 0, got {length}, {index}")
    ctx = ExecutionContext(config=config or ModelConfig())
    with ctx.call():
        allocate_uint_array(ctx, [2 * (i + 1) for i in range(length)])
    return ctx.memory.word_at(index)


def read_storage_slot(storage: StorageMap, slot: int) -> int:
    """Raw word at `slot`, unpriced."""
    return storage.peek(slot)


def slot_hash(base: int, config: Optional[ModelConfig] = None) -> int:
    """hash(encode(base)): the slot of element 0 of an array declared at `base`."""
    return hash_slot(base, (config or ModelConfig()).hasher)


def decode_calldata(
    buffer: bytes | str,
    types: Sequence[str | AbiType],
) -> tuple[bytes, list[Any]]:
    """Selector and decoded parameters of a raw or 0x-hex buffer."""
    if isinstance(buffer, str):
        buffer = decode_hex(buffer)
    view = CallDataView(buffer)
    return view.selector(), view.decode(types)
