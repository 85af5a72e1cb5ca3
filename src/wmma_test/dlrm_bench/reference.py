"""Host reference for the DLRM dot-interaction layer (plain numpy, no tiling)."""

from __future__ import annotations

import numpy as np


def dlrm_fwd_reference(input: np.ndarray, m: int, k: int, b: int, *, out_dtype: np.dtype | str | None = None) -> np.ndarray:
    """Return the flat forward output: per batch, row 0 of the input followed by the
    strict lower triangle (row-major) of `x @ x.T`."""
    x = input[: b * m * k].reshape(b, m, k).astype(np.float64)
    inter = np.einsum("bik,bjk->bij", x, x)
    rows, cols = np.tril_indices(m, -1)
    out = np.concatenate([x[:, 0, :], inter[:, rows, cols]], axis=1)
    return out.reshape(-1).astype(input.dtype if out_dtype is None else out_dtype)


def dlrm_bwd_reference(
    input: np.ndarray,
    upstream_grad: np.ndarray,
    m: int,
    k: int,
    b: int,
    *,
    out_dtype: np.dtype | str | None = None,
    acc_dtype: np.dtype | str = np.float32,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return flat `(grad, bottom_mlp_grad, acc)` for the backward pass.

    `acc` is the symmetric m x m interaction gradient (zero diagonal) rebuilt from
    the packed triangle, `grad = acc @ x`, and `bottom_mlp_grad` adds row 0 of
    `grad` to the passthrough slice of the upstream gradient.
    """
    stride = (m * (m - 1)) // 2 + k
    x = input[: b * m * k].reshape(b, m, k).astype(np.float64)
    up = upstream_grad[: b * stride].reshape(b, stride).astype(np.float64)

    acc = np.zeros((b, m, m), dtype=np.float64)
    rows, cols = np.tril_indices(m, -1)
    acc[:, rows, cols] = up[:, k:]
    acc[:, cols, rows] = up[:, k:]

    grad = np.einsum("bij,bjk->bik", acc, x)
    bottom = up[:, :k] + grad[:, 0, :]

    dtype = input.dtype if out_dtype is None else out_dtype
    return grad.reshape(-1).astype(dtype), bottom.reshape(-1).astype(dtype), acc.reshape(-1).astype(acc_dtype)
