"""Host-side accelerator emulation: one stream, events, launch validation.

Launches are queued and only retire at a synchronization point (an event
wait or a full stream synchronize). Between synchronization points a
`relaxed` stream gives no ordering guarantee and retires queued launches
newest-first; an `in_order` stream retires them in submission order.

Faults raised inside a kernel body are reported asynchronously, at the next
synchronization, as `AcceleratorError`. The error is sticky: every later call
on the stream raises it again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Literal

import attrs

logger = logging.getLogger(__name__)

Dim3 = tuple[int, int, int]
StreamOrdering = Literal["relaxed", "in_order"]

MAX_THREADS_PER_BLOCK = 1024


class AcceleratorError(RuntimeError):
    """Launch, synchronization or kernel execution failure."""


class Event:
    def __init__(self) -> None:
        self._stream: EmulatedStream | None = None
        self._timestamp: float | None = None

    def record(self, stream: EmulatedStream) -> None:
        stream.record_event(self)

    def query(self) -> bool:
        return self._timestamp is not None

    def synchronize(self) -> None:
        if self._stream is None:
            raise AcceleratorError("event synchronized before it was recorded")
        self._stream.wait_event(self)

    def elapsed_time(self, end: Event) -> float:
        """Milliseconds between this event and `end`; both must have completed."""
        if self._timestamp is None or end._timestamp is None:
            raise AcceleratorError("elapsed_time requested on an event that has not completed")
        return (end._timestamp - self._timestamp) * 1000.0


@attrs.define(frozen=True, slots=True)
class _PendingLaunch:
    name: str
    kernel: Callable[..., None]
    args: tuple[Any, ...]


def _check_dim3(kind: str, dim: Dim3) -> None:
    if len(dim) != 3 or any(int(d) < 1 for d in dim):
        raise AcceleratorError(f"invalid configuration argument: {kind}={dim!r}")


class EmulatedStream:
    def __init__(
        self,
        *,
        ordering: StreamOrdering = "relaxed",
        shared_memory_capacity: int = 65536,
        max_threads_per_block: int = MAX_THREADS_PER_BLOCK,
    ) -> None:
        if ordering not in ("relaxed", "in_order"):
            raise ValueError(f"Unknown stream ordering: {ordering!r}")
        self.ordering: StreamOrdering = ordering
        self.shared_memory_capacity = shared_memory_capacity
        self.max_threads_per_block = max_threads_per_block
        self.submit_log: list[str] = []
        self.launch_log: list[str] = []
        self._pending: list[_PendingLaunch | Event] = []
        self._error: AcceleratorError | None = None

    @property
    def pending_count(self) -> int:
        return sum(1 for p in self._pending if isinstance(p, _PendingLaunch))

    def launch(
        self,
        name: str,
        kernel: Callable[..., None],
        grid: Dim3,
        block: Dim3,
        shared_mem_bytes: int,
        *args: Any,
    ) -> None:
        self._raise_if_failed()
        _check_dim3("grid", grid)
        _check_dim3("block", block)
        threads = block[0] * block[1] * block[2]
        if threads > self.max_threads_per_block:
            raise AcceleratorError(
                f"invalid configuration argument: {threads} threads per block exceeds {self.max_threads_per_block}"
            )
        if shared_mem_bytes > self.shared_memory_capacity:
            raise AcceleratorError(
                f"out of resources: {name} requests {shared_mem_bytes} bytes of shared memory "
                f"(capacity {self.shared_memory_capacity})"
            )
        logger.debug("launch %s grid=%s block=%s lds=%d", name, grid, block, shared_mem_bytes)
        self._pending.append(_PendingLaunch(name=name, kernel=kernel, args=args))
        self.submit_log.append(name)

    def record_event(self, event: Event) -> None:
        self._raise_if_failed()
        event._stream = self
        event._timestamp = None
        if self.pending_count == 0:
            event._timestamp = time.perf_counter()
            return
        self._pending.append(event)

    def wait_event(self, event: Event) -> None:
        for i, item in enumerate(self._pending):
            if item is event:
                self._retire(i + 1)
                break
        self._raise_if_failed()

    def synchronize(self) -> None:
        self._retire(len(self._pending))
        self._raise_if_failed()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error

    def _retire(self, count: int) -> None:
        batch = self._pending[:count]
        del self._pending[:count]

        if self.ordering == "in_order":
            for item in batch:
                if isinstance(item, Event):
                    item._timestamp = time.perf_counter()
                else:
                    self._execute(item)
            return

        launches = [p for p in batch if isinstance(p, _PendingLaunch)]
        for item in reversed(launches):
            self._execute(item)
        now = time.perf_counter()
        for item in batch:
            if isinstance(item, Event):
                item._timestamp = now

    def _execute(self, item: _PendingLaunch) -> None:
        if self._error is not None:
            return
        try:
            item.kernel(*item.args)
        except AcceleratorError as e:
            self._error = e
        except Exception as e:
            self._error = AcceleratorError(f"kernel {item.name} failed: {e}")
            self._error.__cause__ = e
        else:
            self.launch_log.append(item.name)
            return
        logger.error("accelerator fault in %s: %s", item.name, self._error)
