"""
32-byte word helpers shared by every region.
"""

from __future__ import annotations

WORD_SIZE = 32

# Max uint256
UINT256_MAX = (1 << 256) - 1
UINT256_CEIL = 1 << 256


def to_word(value: int) -> int:
    """Reduce an int into the uint256 range."""
    return value & UINT256_MAX


def to_word_bytes(value: int) -> bytes:
    """Big-endian 32-byte encoding of a word."""
    return (value & UINT256_MAX).to_bytes(WORD_SIZE, "big")


def ceil32(size: int) -> int:
    """Round a byte size up to the next multiple of 32."""
    return ((size + 31) // 32) * 32

