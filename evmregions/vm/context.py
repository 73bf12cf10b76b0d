"""
Execution context — one owner for the four regions and the accountant.

Stack, memory and call data live for one call; storage outlives calls and
is rolled back to the call-entry snapshot when a call fails.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from evmregions.common.config import ModelConfig
from evmregions.vm.calldata import CallDataView
from evmregions.vm.gas import GasAccountant, get_memory_schedule
from evmregions.vm.hooks import DefaultHook, ExecutionHook
from evmregions.vm.memory import MemoryRegion, Stack
from evmregions.vm.storage import StorageMap

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Owns one instance of every region."""

    config: ModelConfig = field(default_factory=ModelConfig)
    calldata: CallDataView = field(default_factory=CallDataView)

    # Pass an existing map to keep storage across contexts
    storage: Optional[StorageMap] = None
    hook: ExecutionHook = field(default_factory=DefaultHook)

    gas: GasAccountant = field(init=False)
    stack: Stack = field(init=False)
    memory: MemoryRegion = field(init=False)

    def __post_init__(self) -> None:
        if isinstance(self.calldata, (bytes, bytearray)):
            self.calldata = CallDataView(self.calldata)
        self.gas = GasAccountant(self.config.gas_limit)
        self.stack = Stack(self.config.max_stack_depth)
        self.memory = MemoryRegion(
            gas=self.gas,
            schedule=get_memory_schedule(self.config.memory_schedule),
            free_memory_start=self.config.free_memory_start,
        )
        self.memory.on_expand = self.hook.on_memory_expansion
        if self.storage is None:
            self.storage = StorageMap(hasher=self.config.hasher)
        self.storage.attach(self.gas, price_access=self.config.price_storage)
        self.storage.on_write = self.hook.on_state_change

    @property
    def remaining_gas(self) -> int:
        return self.gas.remaining()

    @property
    def gas_used(self) -> int:
        return self.gas.used

    @contextmanager
    def call(self) -> Iterator[ExecutionContext]:
        """Run a call; on any failure discard transient state and re-raise.

        Storage written inside a failed call is rolled back when
        config.revert_storage_on_failure is set.
        """
        snap_id = self.storage.snapshot()
        gas_snap = self.gas.snapshot()
        self.hook.before_call(self)
        try:
            yield self
        except Exception as exc:
            logger.warning("Call aborted: %s: %s", type(exc).__name__, exc)
            self._discard_transient()
            if self.config.revert_storage_on_failure:
                self.storage.revert_to(snap_id)
                self.gas.restore(gas_snap)
            else:
                self.storage.release(snap_id)
            self.hook.after_call(self, exc)
            raise
        except BaseException:
            self.storage.release(snap_id)
            raise
        self.storage.release(snap_id)
        self.hook.after_call(self, None)

    def _discard_transient(self) -> None:
        self.stack.clear()
        self.memory.clear()

    def end(self) -> None:
        """Close the context: drop stack and memory, settle storage originals."""
        self._discard_transient()
        self.storage.finalize()
