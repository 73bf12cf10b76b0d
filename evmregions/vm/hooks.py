"""
Execution hook system.

Extension points for observing region activity without modifying the
regions themselves. DefaultHook does nothing; subclass ExecutionHook to
trace or audit a context.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from evmregions.vm.context import ExecutionContext


class ExecutionHook:
    """Base hook interface — override methods to observe a context."""

    def before_call(self, ctx: ExecutionContext) -> None:
        """Called when a call starts on the context."""
        pass

    def after_call(self, ctx: ExecutionContext, error: Exception | None) -> None:
        """Called after a call finished (error is None on success)."""
        pass

    def on_memory_expansion(self, old_size: int, new_size: int, cost: int) -> None:
        """Called after memory grew from old_size to new_size bytes."""
        pass

    def on_state_change(self, slot: int, old_value: int, new_value: int) -> None:
        """Called when a storage slot is written."""
        pass


class DefaultHook(ExecutionHook):
    """No-op hook."""
    pass


class RecordingHook(ExecutionHook):
    """Keeps every event in order, for inspection and tests."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def before_call(self, ctx: ExecutionContext) -> None:
        self.events.append(("call",))

    def after_call(self, ctx: ExecutionContext, error: Exception | None) -> None:
        self.events.append(("return", type(error).__name__ if error else None))

    def on_memory_expansion(self, old_size: int, new_size: int, cost: int) -> None:
        self.events.append(("expand", old_size, new_size, cost))

    def on_state_change(self, slot: int, old_value: int, new_value: int) -> None:
        self.events.append(("sstore", slot, old_value, new_value))
