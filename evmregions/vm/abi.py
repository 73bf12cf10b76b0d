"""
ABI type parsing, strict decoding and encoding.

Head/tail layout: static values occupy their words in place; every
dynamic value occupies one head word holding an offset, relative to
the start of the enclosing tuple, to a length-prefixed payload.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from eth_utils import to_canonical_address

from evmregions.common.crypto import function_selector
from evmregions.common.words import UINT256_CEIL, WORD_SIZE, ceil32, to_word_bytes
from evmregions.vm.errors import MalformedEncoding


@dataclass(frozen=True)
class AbiType:
    kind: str  # uint, int, address, bool, fixedbytes, bytes, string, array, tuple
    size: int = 0  # bits for uint/int, byte width for fixedbytes
    item: Optional[AbiType] = None
    length: Optional[int] = None  # fixed array length; None for T[]
    components: tuple[AbiType, ...] = ()

    @property
    def is_dynamic(self) -> bool:
        if self.kind in ("bytes", "string"):
            return True
        if self.kind == "array":
            return self.length is None or self.item.is_dynamic
        if self.kind == "tuple":
            return any(c.is_dynamic for c in self.components)
        return False

    @property
    def head_size(self) -> int:
        """Bytes this type occupies in the head of its enclosing tuple."""
        if self.is_dynamic:
            return WORD_SIZE
        if self.kind == "array":
            return self.length * self.item.head_size
        if self.kind == "tuple":
            return sum(c.head_size for c in self.components)
        return WORD_SIZE

    def __str__(self) -> str:
        if self.kind in ("uint", "int"):
            return f"{self.kind}{self.size}"
        if self.kind == "fixedbytes":
            return f"bytes{self.size}"
        if self.kind == "array":
            return f"{self.item}[{'' if self.length is None else self.length}]"
        if self.kind == "tuple":
            return "(" + ",".join(str(c) for c in self.components) + ")"
        return self.kind


_ARRAY_SUFFIX = re.compile(r"^(.*)\[(\d*)\]$")
_INT_TYPE = re.compile(r"^(u?int)(\d*)$")
_FIXED_BYTES = re.compile(r"^bytes(\d+)$")


def split_types(type_list: str) -> list[str]:
    """Split 'uint256,(bool,bytes)[],string' at top-level commas."""
    parts = []
    depth = 0
    current = ""
    for ch in type_list:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced parentheses in {type_list!r}")
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += ch
    if depth != 0:
        raise ValueError(f"Unbalanced parentheses in {type_list!r}")
    if current or parts:
        parts.append(current)
    return [p.strip() for p in parts]


def parse_type(type_str: str) -> AbiType:
    type_str = type_str.strip()
    m = _ARRAY_SUFFIX.match(type_str)
    if m:
        item = parse_type(m.group(1))
        length = int(m.group(2)) if m.group(2) else None
        if length == 0:
            raise ValueError(f"Zero-length fixed array: {type_str}")
        return AbiType(kind="array", item=item, length=length)
    if type_str.startswith("(") and type_str.endswith(")"):
        inner = type_str[1:-1]
        return AbiType(kind="tuple", components=tuple(parse_type(t) for t in split_types(inner)))
    m = _INT_TYPE.match(type_str)
    if m:
        bits = int(m.group(2)) if m.group(2) else 256
        if bits % 8 or not 8 <= bits <= 256:
            raise ValueError(f"Invalid integer width: {type_str}")
        return AbiType(kind=m.group(1), size=bits)
    m = _FIXED_BYTES.match(type_str)
    if m:
        width = int(m.group(1))
        if not 1 <= width <= 32:
            raise ValueError(f"Invalid fixed bytes width: {type_str}")
        return AbiType(kind="fixedbytes", size=width)
    if type_str in ("address", "bool", "bytes", "string"):
        return AbiType(kind=type_str)
    raise ValueError(f"Unsupported ABI type: {type_str!r}")


def parse_types(types: Sequence[str | AbiType]) -> list[AbiType]:
    return [t if isinstance(t, AbiType) else parse_type(t) for t in types]


def parse_signature(signature: str) -> tuple[str, list[AbiType]]:
    """'transfer(address,uint256)' -> ('transfer', [address, uint256])."""
    if "(" not in signature or not signature.endswith(")"):
        raise ValueError(f"Malformed signature: {signature!r}")
    name, args = signature.split("(", 1)
    return name, [parse_type(t) for t in split_types(args[:-1])]


def canonical_signature(name: str, types: Sequence[AbiType]) -> str:
    """'set(uint)' and 'set(uint256)' both canonicalize to 'set(uint256)'."""
    return f"{name}({','.join(str(t) for t in types)})"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _read_word(data: bytes, offset: int) -> int:
    if offset < 0 or offset + WORD_SIZE > len(data):
        raise MalformedEncoding(
            f"Word at {offset} runs past end of {len(data)}-byte payload", offset=offset
        )
    return int.from_bytes(data[offset : offset + WORD_SIZE], "big")


def _read_length(data: bytes, offset: int, unit: int) -> int:
    """Length prefix at offset, checked against the bytes that follow it."""
    length = _read_word(data, offset)
    end = offset + WORD_SIZE + length * max(unit, 1)
    if end > len(data):
        raise MalformedEncoding(
            f"Length {length} at {offset} runs past end of {len(data)}-byte payload",
            offset=offset,
        )
    return length


def _decode_scalar(t: AbiType, data: bytes, offset: int) -> Any:
    word = _read_word(data, offset)
    if t.kind == "uint":
        if word >> t.size:
            raise MalformedEncoding(f"{t} value out of range at {offset}", offset=offset)
        return word
    if t.kind == "int":
        value = word - UINT256_CEIL if word >> 255 else word
        bound = 1 << (t.size - 1)
        if not -bound <= value < bound:
            raise MalformedEncoding(f"{t} value not sign-extended at {offset}", offset=offset)
        return value
    if t.kind == "address":
        if word >> 160:
            raise MalformedEncoding(f"Dirty address high bits at {offset}", offset=offset)
        return word.to_bytes(20, "big")
    if t.kind == "bool":
        if word > 1:
            raise MalformedEncoding(f"Invalid bool {word} at {offset}", offset=offset)
        return bool(word)
    if t.kind == "fixedbytes":
        raw = data[offset : offset + WORD_SIZE]
        if any(raw[t.size :]):
            raise MalformedEncoding(f"Dirty padding in {t} at {offset}", offset=offset)
        return raw[: t.size]
    raise MalformedEncoding(f"Not a scalar type: {t}")


def _decode_at(t: AbiType, data: bytes, offset: int) -> Any:
    """Decode a value whose encoding starts at `offset`."""
    if t.kind in ("bytes", "string"):
        length = _read_length(data, offset, 1)
        raw = data[offset + WORD_SIZE : offset + WORD_SIZE + length]
        if t.kind == "bytes":
            return raw
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEncoding(f"Invalid UTF-8 string at {offset}", offset=offset) from exc
    if t.kind == "array":
        if t.length is None:
            length = _read_length(data, offset, t.item.head_size)
            return decode_tuple([t.item] * length, data, offset + WORD_SIZE)
        return decode_tuple([t.item] * t.length, data, offset)
    if t.kind == "tuple":
        return tuple(decode_tuple(list(t.components), data, offset))
    return _decode_scalar(t, data, offset)


def decode_tuple(types: Sequence[AbiType], data: bytes, base: int = 0) -> list[Any]:
    """Decode a head/tail encoded tuple starting at `base`."""
    values = []
    head = base
    for t in types:
        if t.is_dynamic:
            rel = _read_word(data, head)
            target = base + rel
            if target >= len(data):
                raise MalformedEncoding(
                    f"Offset {rel} at {head} points past end of {len(data)}-byte payload",
                    offset=head,
                )
            values.append(_decode_at(t, data, target))
        else:
            if head + t.head_size > len(data):
                raise MalformedEncoding(
                    f"{t} at {head} runs past end of {len(data)}-byte payload", offset=head
                )
            values.append(_decode_at(t, data, head))
        head += t.head_size
    return values


def decode(types: Sequence[str | AbiType], data: bytes) -> list[Any]:
    return decode_tuple(parse_types(types), data, 0)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _encode_scalar(t: AbiType, value: Any) -> bytes:
    if t.kind == "uint":
        if not isinstance(value, int) or not 0 <= value < (1 << t.size):
            raise ValueError(f"{t} value out of range: {value!r}")
        return to_word_bytes(value)
    if t.kind == "int":
        bound = 1 << (t.size - 1)
        if not isinstance(value, int) or not -bound <= value < bound:
            raise ValueError(f"{t} value out of range: {value!r}")
        return to_word_bytes(value % UINT256_CEIL)
    if t.kind == "address":
        if isinstance(value, int):
            if not 0 <= value < (1 << 160):
                raise ValueError(f"Address out of range: {value}")
            return to_word_bytes(value)
        return to_canonical_address(value).rjust(WORD_SIZE, b"\x00")
    if t.kind == "bool":
        return to_word_bytes(1 if value else 0)
    if t.kind == "fixedbytes":
        if len(value) > t.size:
            raise ValueError(f"{t} value too long: {len(value)} bytes")
        return bytes(value).ljust(WORD_SIZE, b"\x00")
    raise ValueError(f"Not a scalar type: {t}")


def _encode_value(t: AbiType, value: Any) -> bytes:
    if t.kind in ("bytes", "string"):
        raw = value.encode("utf-8") if t.kind == "string" else bytes(value)
        return to_word_bytes(len(raw)) + raw.ljust(ceil32(len(raw)), b"\x00")
    if t.kind == "array":
        items = list(value)
        if t.length is None:
            return to_word_bytes(len(items)) + encode_tuple([t.item] * len(items), items)
        if len(items) != t.length:
            raise ValueError(f"{t} expects {t.length} items, got {len(items)}")
        return encode_tuple([t.item] * t.length, items)
    if t.kind == "tuple":
        return encode_tuple(list(t.components), list(value))
    return _encode_scalar(t, value)


def encode_tuple(types: Sequence[AbiType], values: Sequence[Any]) -> bytes:
    if len(types) != len(values):
        raise ValueError(f"Expected {len(types)} values, got {len(values)}")
    head_size = sum(t.head_size for t in types)
    heads = []
    tails = []
    tail_offset = head_size
    for t, v in zip(types, values):
        encoded = _encode_value(t, v)
        if t.is_dynamic:
            heads.append(to_word_bytes(tail_offset))
            tails.append(encoded)
            tail_offset += len(encoded)
        else:
            heads.append(encoded)
    return b"".join(heads) + b"".join(tails)


def encode(types: Sequence[str | AbiType], values: Sequence[Any]) -> bytes:
    return encode_tuple(parse_types(types), values)


def encode_call(signature: str, values: Sequence[Any]) -> bytes:
    """Selector of `signature` followed by the encoded arguments."""
    name, types = parse_signature(signature)
    return function_selector(canonical_signature(name, types)) + encode_tuple(types, values)

