"""
Region-level opcode handlers.

Only the data-movement subset is modelled: stack shuffling, memory,
storage and call data. Each handler receives the ExecutionContext and
works on its stack. Operands are peeked and popped only after the region
access succeeded, so a failing handler leaves the stack as it found it.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Callable, Optional

from evmregions.vm.context import ExecutionContext
from evmregions.vm.errors import StackUnderflow


class Op(IntEnum):
    POP             = 0x50
    MLOAD           = 0x51
    MSTORE          = 0x52
    MSTORE8         = 0x53
    SLOAD           = 0x54
    SSTORE          = 0x55
    MSIZE           = 0x59

    CALLDATALOAD    = 0x35
    CALLDATASIZE    = 0x36
    CALLDATACOPY    = 0x37

    PUSH0           = 0x5F
    PUSH1           = 0x60
    PUSH32          = 0x7F
    DUP1            = 0x80
    DUP16           = 0x8F
    SWAP1           = 0x90
    SWAP16          = 0x9F


Handler = Callable[[ExecutionContext], None]


def _require(ctx: ExecutionContext, count: int) -> None:
    if len(ctx.stack) < count:
        raise StackUnderflow(
            f"Stack underflow: need {count}, have {len(ctx.stack)}",
            depth=len(ctx.stack),
            requested=count,
        )


def _pop_n(ctx: ExecutionContext, count: int) -> None:
    for _ in range(count):
        ctx.stack.pop()


# ---------------------------------------------------------------------------
# Stack
# ---------------------------------------------------------------------------

def op_pop(ctx):
    ctx.stack.pop()


def op_push0(ctx):
    ctx.stack.push(0)


def _make_dup(n: int) -> Handler:
    def op_dup(ctx):
        ctx.stack.dup(n)
    op_dup.__name__ = f"op_dup{n}"
    return op_dup


def _make_swap(n: int) -> Handler:
    def op_swap(ctx):
        ctx.stack.swap(n)
    op_swap.__name__ = f"op_swap{n}"
    return op_swap


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

def op_mload(ctx):
    _require(ctx, 1)
    value = ctx.memory.load(ctx.stack.peek(0))
    ctx.stack.pop()
    ctx.stack.push(value)


def op_mstore(ctx):
    _require(ctx, 2)
    ctx.memory.store(ctx.stack.peek(0), ctx.stack.peek(1))
    _pop_n(ctx, 2)


def op_mstore8(ctx):
    _require(ctx, 2)
    ctx.memory.store8(ctx.stack.peek(0), ctx.stack.peek(1) & 0xFF)
    _pop_n(ctx, 2)


def op_msize(ctx):
    ctx.stack.push(ctx.memory.size)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def op_sload(ctx):
    _require(ctx, 1)
    value = ctx.storage.read(ctx.stack.peek(0))
    ctx.stack.pop()
    ctx.stack.push(value)


def op_sstore(ctx):
    _require(ctx, 2)
    ctx.storage.write(ctx.stack.peek(0), ctx.stack.peek(1))
    _pop_n(ctx, 2)


# ---------------------------------------------------------------------------
# Call data
# ---------------------------------------------------------------------------

def op_calldataload(ctx):
    _require(ctx, 1)
    value = ctx.calldata.load(ctx.stack.peek(0))
    ctx.stack.pop()
    ctx.stack.push(value)


def op_calldatasize(ctx):
    ctx.stack.push(ctx.calldata.size)


def op_calldatacopy(ctx):
    _require(ctx, 3)
    dest_offset = ctx.stack.peek(0)
    data_offset = ctx.stack.peek(1)
    size = ctx.stack.peek(2)
    data = ctx.calldata.copy(data_offset, size)
    ctx.memory.write(dest_offset, data)
    _pop_n(ctx, 3)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

OPCODE_TABLE: dict[int, Handler] = {}


def _register() -> None:
    t = OPCODE_TABLE
    t[Op.POP] = op_pop
    t[Op.MLOAD] = op_mload
    t[Op.MSTORE] = op_mstore
    t[Op.MSTORE8] = op_mstore8
    t[Op.MSIZE] = op_msize
    t[Op.SLOAD] = op_sload
    t[Op.SSTORE] = op_sstore
    t[Op.CALLDATALOAD] = op_calldataload
    t[Op.CALLDATASIZE] = op_calldatasize
    t[Op.CALLDATACOPY] = op_calldatacopy
    t[Op.PUSH0] = op_push0
    for i in range(16):
        t[Op.DUP1 + i] = _make_dup(i + 1)
        t[Op.SWAP1 + i] = _make_swap(i + 1)


_register()


def is_push(opcode: int) -> bool:
    return Op.PUSH1 <= opcode <= Op.PUSH32


def execute(ctx: ExecutionContext, opcode: int, immediate: Optional[bytes] = None) -> None:
    """Apply one opcode to the context.

    PUSH1..PUSH32 take their immediate bytes in `immediate`; every other
    opcode must be called without one.
    """
    if is_push(opcode):
        width = opcode - Op.PUSH1 + 1
        if immediate is None or len(immediate) != width:
            got = None if immediate is None else len(immediate)
            raise ValueError(f"PUSH{width} needs {width} immediate bytes, got {got}")
        ctx.stack.push(int.from_bytes(immediate, "big"))
        return
    if immediate is not None:
        raise ValueError(f"Opcode {opcode:#04x} takes no immediate")
    handler = OPCODE_TABLE.get(opcode)
    if handler is None:
        raise ValueError(f"Opcode {opcode:#04x} is outside the region model")
    handler(ctx)


def push(value: int, n: int = 0) -> tuple[int, Optional[bytes]]:
    """(opcode, immediate) pushing `value`. Auto-selects PUSH width if n=0."""
    if value == 0 and n == 0:
        return Op.PUSH0, None
    if n == 0:
        n = max(1, (value.bit_length() + 7) // 8)
    return Op.PUSH1 + n - 1, value.to_bytes(n, "big")


def run(ctx: ExecutionContext, program: list) -> None:
    """Apply a sequence of opcodes or (opcode, immediate) pairs in order."""
    for step in program:
        if isinstance(step, tuple):
            execute(ctx, *step)
        else:
            execute(ctx, step)
