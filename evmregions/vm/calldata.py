"""
Read-only view over a call's input buffer.

Layout: 4-byte selector, then the ABI parameter section. Offsets passed
to read_word() and the decoders are relative to the parameter section;
copy() takes absolute buffer offsets.
"""

from __future__ import annotations

from typing import Any, Sequence

from evmregions.common.crypto import function_selector
from evmregions.common.words import WORD_SIZE
from evmregions.vm import abi
from evmregions.vm.abi import AbiType
from evmregions.vm.errors import InvalidCallData, MalformedEncoding, OutOfBounds

SELECTOR_SIZE = 4


class CallDataView:
    """Immutable call data buffer."""

    __slots__ = ("_data",)

    def __init__(self, data: bytes = b"") -> None:
        self._data = bytes(data)

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def selector(self) -> bytes:
        if len(self._data) < SELECTOR_SIZE:
            raise InvalidCallData(
                f"Call data too short for a selector: {len(self._data)} bytes",
                length=len(self._data),
            )
        return self._data[:SELECTOR_SIZE]

    def matches(self, signature: str) -> bool:
        name, types = abi.parse_signature(signature)
        return self.selector() == function_selector(abi.canonical_signature(name, types))

    @property
    def params(self) -> bytes:
        """Parameter section (everything after the selector)."""
        self.selector()
        return self._data[SELECTOR_SIZE:]

    def _check_range(self, start: int, length: int) -> None:
        if start < 0 or length < 0 or start + length > len(self._data):
            raise OutOfBounds(
                f"Read [{start}, {start + length}) exceeds {len(self._data)}-byte call data",
                offset=start,
                size=length,
                length=len(self._data),
            )

    def read_word(self, offset: int) -> int:
        """Word at `offset` within the parameter section."""
        if offset < 0:
            raise OutOfBounds(
                f"Negative parameter offset: {offset}",
                offset=offset,
                size=WORD_SIZE,
                length=len(self._data),
            )
        start = SELECTOR_SIZE + offset
        self._check_range(start, WORD_SIZE)
        return int.from_bytes(self._data[start : start + WORD_SIZE], "big")

    def load(self, offset: int) -> int:
        """Word at absolute `offset`."""
        self._check_range(offset, WORD_SIZE)
        return int.from_bytes(self._data[offset : offset + WORD_SIZE], "big")

    def copy(self, start: int, length: int) -> bytes:
        """Fresh copy of the absolute range [start, start+length)."""
        self._check_range(start, length)
        return bytes(self._data[start : start + length])

    # -- ABI decoding --

    def decode_static(self, types: Sequence[str | AbiType], offset: int = 0) -> list[Any]:
        """Decode fixed-size parameters laid out word by word from `offset`."""
        parsed = abi.parse_types(types)
        for t in parsed:
            if t.is_dynamic:
                raise MalformedEncoding(f"{t} is dynamic; use decode_dynamic()")
        return self._decode(parsed, offset)

    def decode_dynamic(self, types: Sequence[str | AbiType], offset: int = 0) -> list[Any]:
        """Decode a head/tail tuple starting at `offset`; dynamic heads are offsets from it."""
        return self._decode(abi.parse_types(types), offset)

    def decode(self, types: Sequence[str | AbiType]) -> list[Any]:
        return self.decode_dynamic(types, 0)

    def _decode(self, types: list[AbiType], offset: int) -> list[Any]:
        params = self.params
        if not 0 <= offset <= len(params):
            raise MalformedEncoding(
                f"Decode offset {offset} outside {len(params)}-byte parameter section",
                offset=offset,
            )
        return abi.decode_tuple(types, params, offset)
