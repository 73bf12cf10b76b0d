"""Tests for the execution context and region-level opcodes."""

import pytest

from evmregions.common.config import ModelConfig
from evmregions.common.words import to_word_bytes
from evmregions.vm.context import ExecutionContext
from evmregions.vm.errors import OutOfBounds, OutOfGas, StackOverflow, StackUnderflow
from evmregions.vm.hooks import RecordingHook
from evmregions.vm.opcodes import OPCODE_TABLE, Op, execute, push, run
from evmregions.vm.storage import StorageMap


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------

class TestContext:
    def test_components_share_accountant(self, ctx):
        ctx.memory.store(0, 1)
        assert ctx.gas_used == 3
        assert ctx.remaining_gas == ctx.config.gas_limit - 3

    def test_bytes_calldata_wrapped(self):
        ctx = ExecutionContext(calldata=b"\x01\x02\x03\x04")
        assert ctx.calldata.selector() == b"\x01\x02\x03\x04"

    def test_stack_depth_from_config(self):
        ctx = ExecutionContext(config=ModelConfig(max_stack_depth=2))
        ctx.stack.push(1)
        ctx.stack.push(2)
        with pytest.raises(StackOverflow):
            ctx.stack.push(3)

    def test_failed_call_discards_transient_state(self, ctx):
        with pytest.raises(StackUnderflow):
            with ctx.call():
                ctx.stack.push(1)
                ctx.memory.store(0, 5)
                ctx.stack.pop()
                ctx.stack.pop()
        assert len(ctx.stack) == 0
        assert ctx.memory.high_water_mark == 0

    def test_failed_call_reverts_storage(self, ctx):
        ctx.storage.write(1, 1)
        with pytest.raises(OutOfGas):
            with ctx.call():
                ctx.storage.write(1, 2)
                ctx.memory.load(2**40)
        assert ctx.storage.read(1) == 1

    def test_failed_call_keeps_storage_when_configured(self):
        ctx = ExecutionContext(config=ModelConfig(revert_storage_on_failure=False))
        with pytest.raises(StackUnderflow):
            with ctx.call():
                ctx.storage.write(1, 2)
                ctx.stack.pop()
        assert ctx.storage.read(1) == 2

    def test_successful_call_keeps_everything(self, ctx):
        with ctx.call():
            ctx.storage.write(1, 2)
            ctx.memory.store(0, 3)
        assert ctx.storage.read(1) == 2
        assert ctx.memory.load(0) == 3

    def test_invalid_argument_rolls_back_call(self, ctx):
        with pytest.raises(ValueError):
            with ctx.call():
                ctx.storage.write(1, 7)
                ctx.memory.store(0, 3)
                ctx.memory.store(-32, 1)
        assert ctx.storage.read(1) == 0
        assert ctx.memory.high_water_mark == 0

    def test_any_exception_rolls_back_call(self):
        hook = RecordingHook()
        ctx = ExecutionContext(hook=hook)
        with pytest.raises(KeyError):
            with ctx.call():
                ctx.storage.write(1, 7)
                ctx.stack.push(1)
                raise KeyError("boom")
        assert ctx.storage.read(1) == 0
        assert len(ctx.stack) == 0
        assert hook.events[-1] == ("return", "KeyError")

    def test_storage_outlives_context(self):
        storage = StorageMap()
        first = ExecutionContext(storage=storage)
        first.storage.array_push(1, 42)
        first.end()
        second = ExecutionContext(storage=storage)
        assert second.storage.array_get(1, 0) == 42

    def test_end_clears_transient(self, ctx):
        ctx.stack.push(1)
        ctx.memory.store(0, 1)
        ctx.end()
        assert len(ctx.stack) == 0
        assert ctx.memory.size == 0

    def test_priced_storage(self):
        ctx = ExecutionContext(config=ModelConfig(price_storage=True))
        ctx.storage.read(1)
        assert ctx.gas_used == 2100

    def test_hook_events(self):
        hook = RecordingHook()
        ctx = ExecutionContext(hook=hook)
        with ctx.call():
            ctx.memory.store(0, 1)
            ctx.storage.write(2, 3)
        assert hook.events == [
            ("call",),
            ("expand", 0, 32, 3),
            ("sstore", 2, 0, 3),
            ("return", None),
        ]

    def test_hook_sees_failure(self):
        hook = RecordingHook()
        ctx = ExecutionContext(hook=hook)
        with pytest.raises(StackUnderflow):
            with ctx.call():
                ctx.stack.pop()
        assert hook.events[-1] == ("return", "StackUnderflow")


# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------

class TestOpcodes:
    def test_push_helper(self):
        assert push(0) == (Op.PUSH0, None)
        assert push(0x1234) == (Op.PUSH1 + 1, b"\x12\x34")

    def test_mstore_mload(self, ctx):
        run(ctx, [push(0xBEEF), push(0x20), Op.MSTORE, push(0x20), Op.MLOAD])
        assert ctx.stack.pop() == 0xBEEF
        assert len(ctx.stack) == 0

    def test_mstore8_uses_low_byte(self, ctx):
        run(ctx, [push(0x1FF), push(0), Op.MSTORE8, push(0), Op.MLOAD])
        assert ctx.stack.pop() == 0xFF << 248

    def test_msize(self, ctx):
        run(ctx, [push(1), push(33), Op.MSTORE8, Op.MSIZE])
        assert ctx.stack.pop() == 64

    def test_sstore_sload(self, ctx):
        run(ctx, [push(42), push(1), Op.SSTORE, push(1), Op.SLOAD])
        assert ctx.stack.pop() == 42
        assert ctx.storage.read(1) == 42

    def test_calldata_ops(self):
        data = b"\xaa\xbb\xcc\xdd" + to_word_bytes(7)
        ctx = ExecutionContext(calldata=data)
        run(ctx, [Op.CALLDATASIZE, push(4), Op.CALLDATALOAD])
        assert ctx.stack.pop() == 7
        assert ctx.stack.pop() == 36

    def test_calldataload_out_of_bounds(self):
        ctx = ExecutionContext(calldata=b"\x00" * 4)
        execute(ctx, *push(4))
        with pytest.raises(OutOfBounds):
            execute(ctx, Op.CALLDATALOAD)
        assert ctx.stack.peek(0) == 4

    def test_calldatacopy(self):
        data = b"\x01\x02\x03\x04\x05"
        ctx = ExecutionContext(calldata=data)
        # size, data offset, dest offset
        run(ctx, [push(5), push(0), push(0), Op.CALLDATACOPY])
        assert ctx.memory.read(0, 5) == data
        assert len(ctx.stack) == 0

    def test_failed_mstore_leaves_stack(self):
        ctx = ExecutionContext(config=ModelConfig(gas_limit=10))
        run(ctx, [push(1), push(2**30)])
        with pytest.raises(OutOfGas):
            execute(ctx, Op.MSTORE)
        assert len(ctx.stack) == 2
        assert ctx.memory.size == 0

    def test_mstore_underflow(self, ctx):
        execute(ctx, *push(1))
        with pytest.raises(StackUnderflow):
            execute(ctx, Op.MSTORE)
        assert len(ctx.stack) == 1

    def test_dup_swap(self, ctx):
        run(ctx, [push(1), push(2), Op.DUP1 + 1, Op.SWAP1])
        assert [ctx.stack.pop() for _ in range(3)] == [2, 1, 1]

    def test_pop(self, ctx):
        run(ctx, [push(9), Op.POP])
        assert len(ctx.stack) == 0

    def test_table_covers_dup_and_swap(self):
        for i in range(16):
            assert Op.DUP1 + i in OPCODE_TABLE
            assert Op.SWAP1 + i in OPCODE_TABLE

    def test_push_requires_immediate(self, ctx):
        with pytest.raises(ValueError):
            execute(ctx, Op.PUSH1)
        with pytest.raises(ValueError):
            execute(ctx, Op.PUSH1, b"\x01\x02")

    def test_non_region_opcode(self, ctx):
        with pytest.raises(ValueError):
            execute(ctx, 0x01)  # ADD
