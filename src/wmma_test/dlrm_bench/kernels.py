"""Emulated DLRM interaction kernels and the `(tile_size, dtype)` registry.

The kernel bodies run on the host with numpy. They follow the device buffer
layout (flat, batch-strided) and accumulate tile by tile along the contraction
dimension in float64, rounding once to the output buffer type on store.
"""

from __future__ import annotations

import functools
from collections.abc import Callable

import attrs
import numpy as np

from .config import DTYPES

# Emulated kernels are provided for these tile sizes on every dtype.
TILE_SIZES: tuple[int, ...] = (16, 32)


@attrs.define(frozen=True, slots=True)
class KernelSet:
    tile_size: int
    dtype: str
    fwd: Callable[..., None]
    bwd: Callable[..., None]
    tril: Callable[..., None]
    lds_usage: int = 0


def dlrm_fwd_kernel(
    input: np.ndarray,
    output: np.ndarray,
    acc: np.ndarray,
    m: int,
    k: int,
    b: int,
    input_batch_offset: int,
    output_batch_offset: int,
    acc_batch_offset: int,
    *,
    tile_size: int,
) -> None:
    x = input[: b * input_batch_offset].reshape(b, m, k).astype(np.float64)
    inter = np.zeros((b, m, m), dtype=np.float64)
    for k0 in range(0, k, tile_size):
        xt = x[:, :, k0 : k0 + tile_size]
        inter += xt @ xt.transpose(0, 2, 1)
    acc[: b * acc_batch_offset] = inter.reshape(-1)

    out = output[: b * output_batch_offset].reshape(b, output_batch_offset)
    rows, cols = np.tril_indices(m, -1)
    out[:, :k] = x[:, 0, :]
    out[:, k:] = inter[:, rows, cols]


def dlrm_tril_kernel(
    upstream_grad: np.ndarray,
    acc: np.ndarray,
    m: int,
    k: int,
    b: int,
    upstream_batch_offset: int,
    acc_batch_offset: int,
) -> None:
    """Expand the packed lower-triangular upstream gradient into a symmetric m x m accumulator."""
    up = upstream_grad[: b * upstream_batch_offset].reshape(b, upstream_batch_offset).astype(np.float64)
    full = np.zeros((b, m, m), dtype=np.float64)
    rows, cols = np.tril_indices(m, -1)
    full[:, rows, cols] = up[:, k:]
    full[:, cols, rows] = up[:, k:]
    acc[: b * acc_batch_offset] = full.reshape(-1)


def dlrm_bwd_kernel(
    input: np.ndarray,
    upstream_grad: np.ndarray,
    grad: np.ndarray,
    bottom_mlp_grad: np.ndarray,
    acc: np.ndarray,
    m: int,
    k: int,
    b: int,
    input_batch_offset: int,
    upstream_batch_offset: int,
    acc_batch_offset: int,
    *,
    tile_size: int,
) -> None:
    # Reads the accumulator written by dlrm_tril_kernel.
    x = input[: b * input_batch_offset].reshape(b, m, k).astype(np.float64)
    a = acc[: b * acc_batch_offset].reshape(b, m, m).astype(np.float64)
    up = upstream_grad[: b * upstream_batch_offset].reshape(b, upstream_batch_offset).astype(np.float64)

    g = np.zeros((b, m, k), dtype=np.float64)
    for h0 in range(0, m, tile_size):
        g += a[:, :, h0 : h0 + tile_size] @ x[:, h0 : h0 + tile_size, :]
    grad[: b * input_batch_offset] = g.reshape(-1)
    bottom_mlp_grad[: b * k] = (up[:, :k] + g[:, 0, :]).reshape(-1)


def _build_registry() -> dict[tuple[int, str], KernelSet]:
    registry: dict[tuple[int, str], KernelSet] = {}
    for dt in DTYPES.values():
        for tile in TILE_SIZES:
            registry[(tile, dt.key)] = KernelSet(
                tile_size=tile,
                dtype=dt.key,
                fwd=functools.partial(dlrm_fwd_kernel, tile_size=tile),
                bwd=functools.partial(dlrm_bwd_kernel, tile_size=tile),
                tril=dlrm_tril_kernel,
            )
    return registry


KERNEL_REGISTRY: dict[tuple[int, str], KernelSet] = _build_registry()


def has_kernel_set(tile_size: int, dtype: str) -> bool:
    return (tile_size, dtype) in KERNEL_REGISTRY


def get_kernel_set(tile_size: int, dtype: str) -> KernelSet:
    key = (tile_size, dtype)
    if key not in KERNEL_REGISTRY:
        raise KeyError(f"No kernel set registered for tile_size={tile_size}, dtype={dtype!r}")
    return KERNEL_REGISTRY[key]
