"""
Hash functions used for slot derivation and selectors.

- keccak256 (the default word hash)
- sha256 (alternate word hash for experiments)
"""

from __future__ import annotations

from typing import Callable

from Crypto.Hash import keccak as _keccak_mod

HashFunction = Callable[[bytes], bytes]


def keccak256(data: bytes) -> bytes:
    """Compute Keccak-256 hash (NOT SHA3-256)."""
    h = _keccak_mod.new(digest_bits=256)
    h.update(data)
    return h.digest()


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    from Crypto.Hash import SHA256
    return SHA256.new(data).digest()


HASH_FUNCTIONS: dict[str, HashFunction] = {
    "keccak256": keccak256,
    "sha256": sha256,
}


def get_hash_function(name: str) -> HashFunction:
    """Look up a 32-byte hash function by name."""
    try:
        return HASH_FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown hash function: {name!r}") from None


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 over a canonical signature, e.g. 'set(uint256)'."""
    return keccak256(signature.encode("ascii"))[:4]
