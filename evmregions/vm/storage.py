"""
Persistent word-addressed storage and slot derivation.

Slot rules (declared slot S):
  scalar            S
  dynamic array     length at S, element i at hash(S) + i
  mapping           value for key K at hash(encode(K) ++ encode(S))
  struct member     S + member index (or packed, see StructLayout)
  bytes / string    inline when < 32 bytes, else length at S and data at hash(S) + i
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Union

from evmregions.common.crypto import HashFunction, keccak256
from evmregions.common.words import UINT256_CEIL, UINT256_MAX, WORD_SIZE, to_word, to_word_bytes
from evmregions.vm.errors import IndexOutOfRange, StorageError
from evmregions.vm.gas import AccessSets, GasAccountant, sload_gas, sstore_gas

logger = logging.getLogger(__name__)


class DynamicKey(bytes):
    """A `bytes` mapping key hashed raw, as dynamic `bytes` keys are."""


MappingKey = Union[int, bytes, str]


# ---------------------------------------------------------------------------
# Key encoding
# ---------------------------------------------------------------------------

def encode_mapping_key(key: MappingKey) -> bytes:
    """Encode a mapping key for hashing.

    Value-type keys become one 32-byte big-endian word: ints (negative
    ones in two's complement) and plain `bytes` of up to 32 bytes, such
    as a decoded 20-byte address, which are left-padded. `str` and
    DynamicKey are hashed raw, without padding.
    """
    if isinstance(key, int):
        if not -(1 << 255) <= key <= UINT256_MAX:
            raise ValueError(f"Mapping key out of range: {key}")
        return to_word_bytes(key % UINT256_CEIL)
    if isinstance(key, DynamicKey):
        return bytes(key)
    if isinstance(key, (bytes, bytearray)):
        if len(key) > WORD_SIZE:
            raise ValueError(
                f"Mapping key of {len(key)} bytes does not fit a word; wrap dynamic keys in DynamicKey"
            )
        return bytes(key).rjust(WORD_SIZE, b"\x00")
    if isinstance(key, str):
        return key.encode("utf-8")
    raise TypeError(f"Unsupported mapping key type: {type(key).__name__}")


def hash_slot(base: int, hasher: HashFunction = keccak256) -> int:
    """hash(encode(base)) as a word."""
    return int.from_bytes(hasher(to_word_bytes(base)), "big")


# ---------------------------------------------------------------------------
# Packed layouts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemberPosition:
    slot_offset: int
    # Counted from the low-order end of the slot
    byte_offset: int
    size: int


def _pack(sizes: list[int]) -> list[MemberPosition]:
    positions = []
    slot = 0
    used = 0
    for size in sizes:
        if not 1 <= size <= WORD_SIZE:
            raise ValueError(f"Member size must be 1..32 bytes, got {size}")
        if used + size > WORD_SIZE:
            slot += 1
            used = 0
        positions.append(MemberPosition(slot_offset=slot, byte_offset=used, size=size))
        used += size
    return positions


@dataclass(frozen=True)
class StructLayout:
    """Member positions of a struct whose members are packed right-aligned."""

    members: tuple[MemberPosition, ...] = ()

    @classmethod
    def from_sizes(cls, sizes: list[int]) -> StructLayout:
        return cls(members=tuple(_pack(sizes)))

    @property
    def slot_count(self) -> int:
        if not self.members:
            return 0
        return self.members[-1].slot_offset + 1

    def __getitem__(self, index: int) -> MemberPosition:
        if not 0 <= index < len(self.members):
            raise IndexError(f"Struct has no member {index}")
        return self.members[index]


class StorageLayout:
    """Assign top-level variables to slots in declaration order.

    Sub-word variables share a slot while they fit; containers
    (arrays, mappings, bytes, structs) always start a fresh slot and
    consume `slots` whole slots.
    """

    def __init__(self) -> None:
        self._positions: dict[str, MemberPosition] = {}
        self._next_slot = 0
        self._used = 0

    def declare(self, name: str, size: int = WORD_SIZE) -> MemberPosition:
        if name in self._positions:
            raise ValueError(f"Variable already declared: {name}")
        if not 1 <= size <= WORD_SIZE:
            raise ValueError(f"Variable size must be 1..32 bytes, got {size}")
        if self._used + size > WORD_SIZE:
            self._next_slot += 1
            self._used = 0
        pos = MemberPosition(slot_offset=self._next_slot, byte_offset=self._used, size=size)
        self._used += size
        self._positions[name] = pos
        return pos

    def declare_container(self, name: str, slots: int = 1) -> int:
        """Declare an array, mapping, bytes or struct. Returns its base slot."""
        if name in self._positions:
            raise ValueError(f"Variable already declared: {name}")
        if slots < 1:
            raise ValueError(f"Container must occupy at least one slot, got {slots}")
        if self._used:
            self._next_slot += 1
            self._used = 0
        base = self._next_slot
        self._positions[name] = MemberPosition(slot_offset=base, byte_offset=0, size=WORD_SIZE)
        self._next_slot += slots
        return base

    def position_of(self, name: str) -> MemberPosition:
        try:
            return self._positions[name]
        except KeyError:
            raise KeyError(f"Undeclared variable: {name}") from None

    def slot_of(self, name: str) -> int:
        return self.position_of(name).slot_offset


# ---------------------------------------------------------------------------
# Slot derivation strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sequential:
    base: int
    offset: int = 0


@dataclass(frozen=True)
class HashedArray:
    base: int
    index: int


@dataclass(frozen=True)
class HashedMapping:
    base: int
    key: MappingKey


@dataclass(frozen=True)
class PackedStruct:
    base: int
    member_index: int
    layout: Optional[StructLayout] = field(default=None, compare=False)


SlotDerivation = Union[Sequential, HashedArray, HashedMapping, PackedStruct]


def derive_slot(derivation: SlotDerivation, hasher: HashFunction = keccak256) -> int:
    """Resolve a derivation strategy to a concrete slot."""
    if isinstance(derivation, Sequential):
        return to_word(derivation.base + derivation.offset)
    if isinstance(derivation, HashedArray):
        if derivation.index < 0:
            raise ValueError(f"Negative array index: {derivation.index}")
        return to_word(hash_slot(derivation.base, hasher) + derivation.index)
    if isinstance(derivation, HashedMapping):
        preimage = encode_mapping_key(derivation.key) + to_word_bytes(derivation.base)
        return int.from_bytes(hasher(preimage), "big")
    if isinstance(derivation, PackedStruct):
        if derivation.member_index < 0:
            raise ValueError(f"Negative member index: {derivation.member_index}")
        if derivation.layout is None:
            return to_word(derivation.base + derivation.member_index)
        member = derivation.layout[derivation.member_index]
        return to_word(derivation.base + member.slot_offset)
    raise TypeError(f"Unknown slot derivation: {derivation!r}")


# ---------------------------------------------------------------------------
# Storage map
# ---------------------------------------------------------------------------

class StorageMap:
    """Sparse slot -> word mapping; unset slots read as zero.

    With `price_access` and an accountant, reads and writes are charged
    EIP-2929 warm/cold and EIP-2200 SSTORE costs before they take effect.
    """

    def __init__(
        self,
        gas: Optional[GasAccountant] = None,
        hasher: HashFunction = keccak256,
        price_access: bool = False,
    ) -> None:
        self._slots: dict[int, int] = {}
        self._original: dict[int, int] = {}
        self.attach(gas, price_access)
        self.hasher = hasher
        self.access_sets = AccessSets()
        self._snapshots: list[dict] = []
        # (slot, old_value, new_value)
        self.on_write: Optional[Callable[[int, int, int], None]] = None

    def attach(self, gas: Optional[GasAccountant], price_access: bool = False) -> None:
        """Charge future accesses to `gas` (a new context's accountant)."""
        if price_access and gas is None:
            raise ValueError("Storage pricing needs a gas accountant")
        self._gas = gas
        self._price_access = price_access

    # -- Primitive access --

    def read(self, slot: int) -> int:
        slot = self._check_slot(slot)
        if self._price_access:
            self._gas.charge(sload_gas(self.access_sets.is_warm_storage(slot)), reason="sload")
            self.access_sets.mark_warm_storage(slot)
        return self._slots.get(slot, 0)

    def write(self, slot: int, value: int) -> None:
        slot = self._check_slot(slot)
        if not 0 <= value <= UINT256_MAX:
            raise ValueError(f"Value out of uint256 range: {value}")
        if self._price_access:
            current = self._slots.get(slot, 0)
            original = self._original.get(slot, 0)
            is_warm = self.access_sets.is_warm_storage(slot)
            cost, refund = sstore_gas(current, value, original, is_warm)
            self._gas.charge(cost, reason="sstore")
            self.access_sets.mark_warm_storage(slot)
            self._gas.add_refund(refund)
        old = self._slots.get(slot, 0)
        if value:
            self._slots[slot] = value
        else:
            self._slots.pop(slot, None)
        if self.on_write is not None:
            self.on_write(slot, old, value)

    def peek(self, slot: int) -> int:
        """Unpriced read, for inspection."""
        return self._slots.get(self._check_slot(slot), 0)

    @staticmethod
    def _check_slot(slot: int) -> int:
        if not 0 <= slot <= UINT256_MAX:
            raise ValueError(f"Slot out of range: {slot}")
        return slot

    def __len__(self) -> int:
        return len(self._slots)

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Group several writes so a failure part-way leaves no trace.

        Gas charged before the failure stays charged; refunds are undone.
        """
        snap_id = self.snapshot()
        refund = self._gas.refund if self._gas is not None else 0
        try:
            yield
        except Exception:
            self.revert_to(snap_id)
            if self._gas is not None:
                self._gas.refund = refund
            raise
        self.release(snap_id)

    # -- Derivation --

    def hash_slot(self, base: int) -> int:
        return hash_slot(base, self.hasher)

    def derive_slot(self, derivation: SlotDerivation) -> int:
        return derive_slot(derivation, self.hasher)

    def derive_array_slot(self, base: int, index: int) -> int:
        return self.derive_slot(HashedArray(base, index))

    def derive_mapping_slot(self, base: int, key: MappingKey) -> int:
        return self.derive_slot(HashedMapping(base, key))

    def derive_struct_member_slot(self, base: int, member_index: int) -> int:
        return self.derive_slot(PackedStruct(base, member_index))

    # -- Dynamic arrays --

    def array_length(self, base: int) -> int:
        return self.read(base)

    def array_push(self, base: int, value: int) -> int:
        """Append to the dynamic array at `base`; returns the new element's index."""
        with self._atomic():
            length = self.read(base)
            self.write(self.derive_array_slot(base, length), value)
            self.write(base, length + 1)
        return length

    def array_pop(self, base: int) -> int:
        with self._atomic():
            length = self.read(base)
            if length == 0:
                raise StorageError(f"pop from empty array at slot {base}")
            slot = self.derive_array_slot(base, length - 1)
            value = self.read(slot)
            self.write(slot, 0)
            self.write(base, length - 1)
        return value

    def _element_slot(self, base: int, index: int) -> int:
        length = self.read(base)
        if not 0 <= index < length:
            raise IndexOutOfRange(
                f"Index {index} out of range for array of length {length} at slot {base}",
                index=index,
                length=length,
            )
        return self.derive_array_slot(base, index)

    def array_get(self, base: int, index: int) -> int:
        return self.read(self._element_slot(base, index))

    def array_set(self, base: int, index: int, value: int) -> None:
        self.write(self._element_slot(base, index), value)

    # -- Packed values --

    def read_packed(self, slot: int, byte_offset: int, size: int) -> int:
        _check_packed(byte_offset, size)
        return (self.read(slot) >> (8 * byte_offset)) & ((1 << (8 * size)) - 1)

    def write_packed(self, slot: int, byte_offset: int, size: int, value: int) -> None:
        _check_packed(byte_offset, size)
        mask = (1 << (8 * size)) - 1
        if not 0 <= value <= mask:
            raise ValueError(f"Value {value} does not fit in {size} bytes")
        word = self.read(slot)
        word &= ~(mask << (8 * byte_offset)) & UINT256_MAX
        self.write(slot, word | (value << (8 * byte_offset)))

    def read_member(self, base: int, layout: StructLayout, member_index: int) -> int:
        member = layout[member_index]
        slot = self.derive_slot(PackedStruct(base, member_index, layout))
        return self.read_packed(slot, member.byte_offset, member.size)

    def write_member(self, base: int, layout: StructLayout, member_index: int, value: int) -> None:
        member = layout[member_index]
        slot = self.derive_slot(PackedStruct(base, member_index, layout))
        self.write_packed(slot, member.byte_offset, member.size, value)

    # -- Bytes and strings --

    def _bytes_length(self, slot: int) -> tuple[int, bool]:
        word = self.read(slot)
        if word & 1:
            length = (word - 1) // 2
            if length < WORD_SIZE:
                raise StorageError(f"Corrupt long-form bytes at slot {slot}: length {length}")
            return length, True
        length = (word & 0xFF) // 2
        if length >= WORD_SIZE:
            raise StorageError(f"Corrupt short-form bytes at slot {slot}: length {length}")
        return length, False

    def read_bytes(self, slot: int) -> bytes:
        length, is_long = self._bytes_length(slot)
        if not is_long:
            return to_word_bytes(self.read(slot))[:length]
        data_slot = self.hash_slot(slot)
        chunks = [
            to_word_bytes(self.read(to_word(data_slot + i)))
            for i in range((length + 31) // 32)
        ]
        return b"".join(chunks)[:length]

    def write_bytes(self, slot: int, data: bytes) -> None:
        with self._atomic():
            old_length, was_long = self._bytes_length(slot)
            data_slot = self.hash_slot(slot)
            new_words = 0
            if len(data) < WORD_SIZE:
                word = int.from_bytes(data.ljust(WORD_SIZE, b"\x00"), "big") | (len(data) * 2)
                self.write(slot, word)
            else:
                new_words = (len(data) + 31) // 32
                padded = data.ljust(new_words * WORD_SIZE, b"\x00")
                for i in range(new_words):
                    chunk = padded[i * WORD_SIZE : (i + 1) * WORD_SIZE]
                    self.write(to_word(data_slot + i), int.from_bytes(chunk, "big"))
                self.write(slot, len(data) * 2 + 1)
            if was_long:
                for i in range(new_words, (old_length + 31) // 32):
                    self.write(to_word(data_slot + i), 0)

    def read_string(self, slot: int) -> str:
        return self.read_bytes(slot).decode("utf-8")

    def write_string(self, slot: int, value: str) -> None:
        self.write_bytes(slot, value.encode("utf-8"))

    # -- Snapshots --

    def snapshot(self) -> int:
        self._snapshots.append({
            "slots": dict(self._slots),
            "access_sets": self.access_sets.snapshot(),
        })
        snap_id = len(self._snapshots) - 1
        logger.debug("Storage snapshot %d (%d slots)", snap_id, len(self._slots))
        return snap_id

    def revert_to(self, snap_id: int) -> None:
        if not 0 <= snap_id < len(self._snapshots):
            raise StorageError(f"Unknown snapshot: {snap_id}")
        snap = self._snapshots[snap_id]
        self._slots = snap["slots"]
        self.access_sets.restore(snap["access_sets"])
        self._snapshots = self._snapshots[:snap_id]
        logger.debug("Storage reverted to snapshot %d", snap_id)

    def release(self, snap_id: int) -> None:
        """Drop a snapshot (and any taken after it) without reverting."""
        if not 0 <= snap_id < len(self._snapshots):
            raise StorageError(f"Unknown snapshot: {snap_id}")
        self._snapshots = self._snapshots[:snap_id]

    def finalize(self) -> None:
        """Make current values the originals used by SSTORE pricing."""
        self._original = dict(self._slots)
        self.access_sets = AccessSets()


def _check_packed(byte_offset: int, size: int) -> None:
    if size < 1 or byte_offset < 0 or byte_offset + size > WORD_SIZE:
        raise ValueError(f"Packed field [{byte_offset}, {byte_offset + size}) exceeds a word")
