"""Dispatch plans for the DLRM interaction kernels.

A forward plan is a single launch. A backward plan is the triangular reduction,
an event barrier, then the main backward kernel, which reads the reduction's
accumulator. Plans are plain data so their ordering can be inspected and
rearranged in tests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Union

import attrs

from .config import Direction, ProblemConfig, ceil_div
from .emulator import Dim3, EmulatedStream, Event
from .kernels import KernelSet
from .storage import DataStorage

logger = logging.getLogger(__name__)


class UnsupportedPaddingError(ValueError):
    """Dispatch was requested for dimensions that are not multiples of the tile size."""


@attrs.define(frozen=True, slots=True)
class KernelLaunch:
    name: str
    kernel: Callable[..., None] = attrs.field(repr=False)
    grid: Dim3
    block: Dim3
    shared_mem_bytes: int
    args: tuple[Any, ...] = attrs.field(repr=False)


@attrs.define(frozen=True, slots=True)
class EventBarrier:
    after: str


DispatchStep = Union[KernelLaunch, EventBarrier]


@attrs.define(frozen=True, slots=True)
class DispatchPlan:
    direction: Direction
    steps: tuple[DispatchStep, ...]

    def launch_names(self) -> list[str]:
        return [s.name for s in self.steps if isinstance(s, KernelLaunch)]


def block_dim(config: ProblemConfig) -> Dim3:
    return (config.block[0], 1, 1)


def grid_dim(config: ProblemConfig, warp_size: int) -> Dim3:
    # Each block covers tile_size * (block.x / warp_size) rows of the padded interaction.
    rows_per_block = config.tile_size * config.block[0] // warp_size
    if rows_per_block == 0:
        raise ValueError(f"block.x={config.block[0]} is too small for warp_size={warp_size}")
    x = ceil_div(config.m_padded, rows_per_block)
    if config.direction == "forward":
        return (x, ceil_div(config.m, config.tile_size), config.b)
    return (x, ceil_div(config.k, config.tile_size), config.b)


def tril_grid_dim(config: ProblemConfig) -> Dim3:
    return (ceil_div(config.m * config.m, config.block[0]), 1, config.b)


def forward_plan(config: ProblemConfig, kernels: KernelSet, storage: DataStorage, warp_size: int) -> DispatchPlan:
    launch = KernelLaunch(
        name="dlrm_fwd",
        kernel=kernels.fwd,
        grid=grid_dim(config, warp_size),
        block=block_dim(config),
        shared_mem_bytes=kernels.lds_usage,
        args=(
            storage.device_input,
            storage.device_output,
            storage.device_acc_fwd,
            config.m,
            config.k,
            config.b,
            config.input_batch_offset,
            config.output_batch_offset,
            config.acc_batch_offset,
        ),
    )
    return DispatchPlan(direction="forward", steps=(launch,))


def backward_plan(config: ProblemConfig, kernels: KernelSet, storage: DataStorage, warp_size: int) -> DispatchPlan:
    tril = KernelLaunch(
        name="dlrm_tril",
        kernel=kernels.tril,
        grid=tril_grid_dim(config),
        block=block_dim(config),
        shared_mem_bytes=0,
        args=(
            storage.device_upstream_grad,
            storage.device_acc_bwd,
            config.m,
            config.k,
            config.b,
            config.upstream_batch_offset,
            config.acc_batch_offset,
        ),
    )
    bwd = KernelLaunch(
        name="dlrm_bwd",
        kernel=kernels.bwd,
        grid=grid_dim(config, warp_size),
        block=block_dim(config),
        shared_mem_bytes=kernels.lds_usage,
        args=(
            storage.device_input,
            storage.device_upstream_grad,
            storage.device_grad,
            storage.device_bottom_mlp_grad,
            storage.device_acc_bwd,
            config.m,
            config.k,
            config.b,
            config.input_batch_offset,
            config.upstream_batch_offset,
            config.acc_batch_offset,
        ),
    )
    return DispatchPlan(direction="backward", steps=(tril, EventBarrier(after=tril.name), bwd))


def build_plan(config: ProblemConfig, kernels: KernelSet, storage: DataStorage, warp_size: int) -> DispatchPlan:
    if config.is_padded:
        # Only the aligned path exists; a padded dispatch is deliberately not guessed at.
        raise UnsupportedPaddingError(
            f"Unaligned problem {config.m}x{config.k} (padded {config.m_padded}x{config.k_padded}) "
            f"for tile_size={config.tile_size} has no dispatch path"
        )
    if config.direction == "forward":
        plan = forward_plan(config, kernels, storage, warp_size)
    else:
        plan = backward_plan(config, kernels, storage, warp_size)
    logger.debug("built %s plan: %s", plan.direction, plan.steps)
    return plan


def execute_plan(plan: DispatchPlan, stream: EmulatedStream) -> None:
    for step in plan.steps:
        if isinstance(step, KernelLaunch):
            stream.launch(step.name, step.kernel, step.grid, step.block, step.shared_mem_bytes, *step.args)
        else:
            sync = Event()
            sync.record(stream)
            sync.synchronize()


def timed_dispatch(plan: DispatchPlan, stream: EmulatedStream, repeats: int) -> float:
    """Run `plan` `repeats` times inside one start/stop event window; return elapsed ms."""
    if repeats <= 0:
        raise ValueError(f"repeats must be positive, got {repeats}")
    start = Event()
    stop = Event()
    start.record(stream)
    for _ in range(repeats):
        execute_plan(plan, stream)
    stop.record(stream)
    stop.synchronize()
    elapsed_ms = start.elapsed_time(stop)
    logger.debug("%s x%d: %.6f ms", plan.direction, repeats, elapsed_ms)
    return elapsed_ms
