"""Accelerator output vs host reference comparison.

The comparison runs as a kernel on the stream. Per element the relative error
is `|a - b| / (|a| + |b| + 1)`; any NaN or inf makes it infinite. A comparison
passes when the maximum stays within `epsilon(dtype) * tolerance`.
"""

from __future__ import annotations

import logging

import numpy as np

from .config import ProblemConfig, get_dtype
from .emulator import EmulatedStream
from .model import ComparisonResult, TrialState, ValidationFailure
from .reference import dlrm_bwd_reference, dlrm_fwd_reference
from .storage import DataStorage

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 10.0
_COMPARE_BLOCK = 256


def compare_kernel(a: np.ndarray, b: np.ndarray, count: int, result: np.ndarray) -> None:
    va = a[:count].astype(np.float64)
    vb = b[:count].astype(np.float64)
    with np.errstate(invalid="ignore", over="ignore"):
        err = np.abs(va - vb) / (np.abs(va) + np.abs(vb) + 1.0)
    err[~np.isfinite(err)] = np.inf
    result[0] = float(err.max()) if count else 0.0


def compare_equal_launch_kernel(
    stream: EmulatedStream,
    a: np.ndarray,
    b: np.ndarray,
    rows: int,
    cols: int,
    batch: int,
    *,
    dtype: str,
    tolerance: float = DEFAULT_TOLERANCE,
    label: str = "output",
) -> ComparisonResult:
    count = rows * cols * batch
    result = np.zeros(1, dtype=np.float64)
    grid = (max(1, -(-count // _COMPARE_BLOCK)), 1, 1)
    stream.launch("compare_equal", compare_kernel, grid, (_COMPARE_BLOCK, 1, 1), 0, a, b, count, result)
    stream.synchronize()

    max_rel = float(result[0])
    threshold = get_dtype(dtype).epsilon * tolerance
    return ComparisonResult(label=label, passed=max_rel <= threshold, max_relative_error=max_rel)


def _expect(state: TrialState, comparison: ComparisonResult, threshold: float) -> None:
    state.comparisons.append(comparison)
    if comparison.passed:
        return
    failure = ValidationFailure(
        label=comparison.label, max_relative_error=comparison.max_relative_error, threshold=threshold
    )
    state.failures.append(failure)
    logger.warning("validation mismatch: %s", failure.message())


def validate_forward(
    config: ProblemConfig, storage: DataStorage, stream: EmulatedStream, state: TrialState, *, tolerance: float
) -> None:
    m, k, b = config.m, config.k, config.b
    ref = dlrm_fwd_reference(storage.host_input, m, k, b, out_dtype=storage.host_output_ref.dtype)
    storage.copy_data(storage.host_output_ref, ref, ref.size)

    reference = storage.alloc_device(config.output_batch_offset * b, dtype=storage.host_output_ref.dtype)
    storage.copy_data(reference, storage.host_output_ref, config.output_batch_offset * b)

    cmp = compare_equal_launch_kernel(
        stream,
        storage.device_output,
        reference,
        1,
        config.output_batch_offset,
        b,
        dtype=config.dtype,
        tolerance=tolerance,
        label="output",
    )
    _expect(state, cmp, get_dtype(config.dtype).epsilon * tolerance)
    state.validation_result = cmp.passed
    state.max_relative_error = cmp.max_relative_error


def validate_backward(
    config: ProblemConfig, storage: DataStorage, stream: EmulatedStream, state: TrialState, *, tolerance: float
) -> None:
    """Compare gradient, bottom-MLP gradient and triangular accumulator independently.

    The trial's error is the largest of the three; it passes only if all three do.
    """
    m, k, b = config.m, config.k, config.b
    grad_ref, bottom_ref, acc_ref = dlrm_bwd_reference(
        storage.host_input,
        storage.host_upstream_grad,
        m,
        k,
        b,
        out_dtype=storage.host_grad_ref.dtype,
        acc_dtype=storage.host_acc_bwd_ref.dtype,
    )
    storage.copy_data(storage.host_grad_ref, grad_ref, grad_ref.size)
    storage.copy_data(storage.host_bottom_mlp_grad_ref, bottom_ref, bottom_ref.size)
    storage.copy_data(storage.host_acc_bwd_ref, acc_ref, acc_ref.size)

    threshold = get_dtype(config.dtype).epsilon * tolerance
    targets = (
        ("grad", storage.device_grad, storage.host_grad_ref, m, k),
        ("bottom_mlp_grad", storage.device_bottom_mlp_grad, storage.host_bottom_mlp_grad_ref, 1, k),
        ("acc_bwd", storage.device_acc_bwd, storage.host_acc_bwd_ref, m, m),
    )

    results: list[ComparisonResult] = []
    for label, device_buf, host_ref, rows, cols in targets:
        reference = storage.alloc_device(rows * cols * b, dtype=host_ref.dtype)
        storage.copy_data(reference, host_ref, rows * cols * b)
        cmp = compare_equal_launch_kernel(
            stream, device_buf, reference, rows, cols, b, dtype=config.dtype, tolerance=tolerance, label=label
        )
        _expect(state, cmp, threshold)
        results.append(cmp)

    state.validation_result = all(r.passed for r in results)
    state.max_relative_error = max(r.max_relative_error for r in results)
