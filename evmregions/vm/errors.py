"""
Region error hierarchy.

Every failure a region raises derives from EvmError and carries the
inputs that caused it.
"""

from __future__ import annotations

from typing import Optional


class EvmError(Exception):
    """Base class for region errors."""
    pass


class StackOverflow(EvmError):
    def __init__(self, message: str, depth: int = 0):
        self.depth = depth
        super().__init__(message)


class StackUnderflow(EvmError):
    def __init__(self, message: str, depth: int = 0, requested: int = 0):
        self.depth = depth
        self.requested = requested
        super().__init__(message)


class OutOfGas(EvmError):
    def __init__(
        self,
        message: str,
        needed: int = 0,
        remaining: int = 0,
        offset: Optional[int] = None,
        size: Optional[int] = None,
    ):
        self.needed = needed
        self.remaining = remaining
        self.offset = offset
        self.size = size
        super().__init__(message)


class OutOfBounds(EvmError):
    """Call data read past the end of the buffer."""
    def __init__(self, message: str, offset: int = 0, size: int = 0, length: int = 0):
        self.offset = offset
        self.size = size
        self.length = length
        super().__init__(message)


class MalformedEncoding(EvmError):
    """ABI payload whose offsets, lengths or values are invalid."""
    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        super().__init__(message)


class InvalidCallData(EvmError):
    """Buffer too short to carry a selector."""
    def __init__(self, message: str, length: int = 0):
        self.length = length
        super().__init__(message)


class StorageError(EvmError):
    pass


class IndexOutOfRange(StorageError):
    def __init__(self, message: str, index: int = 0, length: int = 0):
        self.index = index
        self.length = length
        super().__init__(message)
