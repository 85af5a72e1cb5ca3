from __future__ import annotations

from collections import Counter

import pytest

from wmma_test.dlrm_bench.config import ProblemConfig
from wmma_test.dlrm_bench.dispatch import (
    EventBarrier,
    KernelLaunch,
    UnsupportedPaddingError,
    block_dim,
    build_plan,
    grid_dim,
    timed_dispatch,
    tril_grid_dim,
)
from wmma_test.dlrm_bench.emulator import EmulatedStream
from wmma_test.dlrm_bench.kernels import get_kernel_set
from wmma_test.dlrm_bench.storage import DataStorage


def _cfg(direction: str = "forward", *, m: int = 32, k: int = 32, block_x: int = 64) -> ProblemConfig:
    return ProblemConfig(m=m, k=k, b=4, tile_size=16, dtype="f32", block=(block_x, 1), direction=direction)


def _storage(cfg: ProblemConfig) -> DataStorage:
    s = DataStorage()
    if cfg.direction == "forward":
        s.resize_fwd_storage(cfg)
    else:
        s.resize_bwd_storage(cfg)
    s.fill(s.device_input, cfg.m, cfg.k, cfg.b)
    if cfg.direction == "backward":
        s.fill(s.device_upstream_grad, 1, cfg.upstream_batch_offset, cfg.b)
    return s


def test_launch_geometry_forward() -> None:
    cfg = _cfg(m=32, k=64)
    assert block_dim(cfg) == (64, 1, 1)
    assert grid_dim(cfg, warp_size=64) == (2, 2, 4)
    assert grid_dim(cfg, warp_size=32) == (1, 2, 4)


def test_launch_geometry_backward_uses_k_tiles() -> None:
    cfg = _cfg("backward", m=32, k=64)
    assert grid_dim(cfg, warp_size=64) == (2, 4, 4)
    assert tril_grid_dim(cfg) == (16, 1, 4)


def test_launch_geometry_rejects_tiny_block() -> None:
    cfg = ProblemConfig(m=32, k=32, b=1, tile_size=16, dtype="f32", block=(2, 1))
    with pytest.raises(ValueError):
        grid_dim(cfg, warp_size=64)


def test_forward_plan_is_single_launch() -> None:
    cfg = _cfg()
    plan = build_plan(cfg, get_kernel_set(16, "f32"), _storage(cfg), 64)
    assert plan.direction == "forward"
    assert len(plan.steps) == 1
    launch = plan.steps[0]
    assert isinstance(launch, KernelLaunch)
    assert launch.name == "dlrm_fwd"
    assert launch.shared_mem_bytes == 0
    assert launch.args[-3:] == (32 * 32, 32 * 31 // 2 + 32, 32 * 32)


def test_backward_plan_has_barrier_between_reduction_and_main() -> None:
    cfg = _cfg("backward")
    plan = build_plan(cfg, get_kernel_set(16, "f32"), _storage(cfg), 64)
    tril, barrier, bwd = plan.steps
    assert isinstance(tril, KernelLaunch) and tril.name == "dlrm_tril"
    assert barrier == EventBarrier(after="dlrm_tril")
    assert isinstance(bwd, KernelLaunch) and bwd.name == "dlrm_bwd"
    assert tril.grid == (16, 1, 4)
    assert plan.launch_names() == ["dlrm_tril", "dlrm_bwd"]


def test_unaligned_dims_have_no_dispatch_path() -> None:
    cfg = _cfg(m=24)
    with pytest.raises(UnsupportedPaddingError):
        build_plan(cfg, get_kernel_set(16, "f32"), DataStorage(), 64)


def test_timed_dispatch_launches_once_per_repeat() -> None:
    cfg = _cfg()
    stream = EmulatedStream()
    plan = build_plan(cfg, get_kernel_set(16, "f32"), _storage(cfg), 64)
    elapsed = timed_dispatch(plan, stream, 5)
    assert elapsed >= 0.0
    assert stream.launch_log == ["dlrm_fwd"] * 5
    assert stream.pending_count == 0


def test_timed_dispatch_backward_submission_order() -> None:
    cfg = _cfg("backward")
    stream = EmulatedStream()
    plan = build_plan(cfg, get_kernel_set(16, "f32"), _storage(cfg), 64)
    timed_dispatch(plan, stream, 3)
    assert stream.submit_log == ["dlrm_tril", "dlrm_bwd"] * 3
    assert Counter(stream.launch_log) == {"dlrm_tril": 3, "dlrm_bwd": 3}
    assert stream.launch_log[0] == "dlrm_tril"


def test_timed_dispatch_rejects_zero_repeats() -> None:
    cfg = _cfg()
    plan = build_plan(cfg, get_kernel_set(16, "f32"), _storage(cfg), 64)
    with pytest.raises(ValueError):
        timed_dispatch(plan, EmulatedStream(), 0)
