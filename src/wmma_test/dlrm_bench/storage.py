"""Buffer provisioning for DLRM trials.

`DataStorage` is an explicitly owned handle: the harness that holds it resizes
it per trial, and `claim()` keeps two trials from provisioning against the same
instance at once. Device and host buffers are separate flat numpy arrays.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator

import numpy as np

from .config import ProblemConfig, get_dtype

logger = logging.getLogger(__name__)


class StorageBusyError(RuntimeError):
    """Raised when a second trial tries to claim a storage instance already in use."""


def acc_dtype_for(dtype: str) -> np.dtype:
    # Accumulators are f32 except for f64 (f64) and i8 (i32) inputs.
    if dtype == "f64":
        return np.dtype(np.float64)
    if dtype == "i8":
        return np.dtype(np.int32)
    return np.dtype(np.float32)


def output_dtype_for(dtype: str) -> np.dtype:
    """Element type of interaction outputs and gradients; i8 results widen to i32."""
    if dtype == "i8":
        return np.dtype(np.int32)
    return get_dtype(dtype).numpy_dtype


class DataStorage:
    def __init__(self, *, seed: int = 0) -> None:
        self._lock = threading.Lock()
        self._rng = np.random.default_rng(seed)
        self._buffers: dict[str, np.ndarray] = {}
        self.dtype: np.dtype | None = None

    @contextlib.contextmanager
    def claim(self) -> Iterator["DataStorage"]:
        if not self._lock.acquire(blocking=False):
            raise StorageBusyError("DataStorage is already claimed by another trial")
        try:
            yield self
        finally:
            self._lock.release()

    def reseed(self, seed: int) -> None:
        self._rng = np.random.default_rng(seed)

    def _buffer(self, name: str) -> np.ndarray:
        buf = self._buffers.get(name)
        if buf is None:
            raise KeyError(f"Buffer {name!r} is not allocated (resize storage for the trial first)")
        return buf

    def resize_fwd_storage(self, config: ProblemConfig) -> None:
        dtype = get_dtype(config.dtype).numpy_dtype
        out_dtype = output_dtype_for(config.dtype)
        acc_dtype = acc_dtype_for(config.dtype)
        m, k, b = config.m, config.k, config.b
        self.release()
        self.dtype = dtype
        self._buffers = {
            "device_input": np.zeros(m * k * b, dtype=dtype),
            "device_output": np.zeros(config.output_batch_offset * b, dtype=out_dtype),
            "device_acc_fwd": np.zeros(m * m * b, dtype=acc_dtype),
            "host_input": np.zeros(m * k * b, dtype=dtype),
            "host_output_ref": np.zeros(config.output_batch_offset * b, dtype=out_dtype),
        }
        logger.debug("resized forward storage for %s", config.to_label())

    def resize_bwd_storage(self, config: ProblemConfig) -> None:
        dtype = get_dtype(config.dtype).numpy_dtype
        out_dtype = output_dtype_for(config.dtype)
        acc_dtype = acc_dtype_for(config.dtype)
        m, k, b = config.m, config.k, config.b
        self.release()
        self.dtype = dtype
        self._buffers = {
            "device_input": np.zeros(m * k * b, dtype=dtype),
            "device_upstream_grad": np.zeros(config.upstream_batch_offset * b, dtype=dtype),
            "device_acc_bwd": np.zeros(m * m * b, dtype=acc_dtype),
            "device_grad": np.zeros(m * k * b, dtype=out_dtype),
            "device_bottom_mlp_grad": np.zeros(k * b, dtype=out_dtype),
            "host_input": np.zeros(m * k * b, dtype=dtype),
            "host_upstream_grad": np.zeros(config.upstream_batch_offset * b, dtype=dtype),
            "host_grad_ref": np.zeros(m * k * b, dtype=out_dtype),
            "host_bottom_mlp_grad_ref": np.zeros(k * b, dtype=out_dtype),
            "host_acc_bwd_ref": np.zeros(m * m * b, dtype=acc_dtype),
        }
        logger.debug("resized backward storage for %s", config.to_label())

    def release(self) -> None:
        self._buffers = {}
        self.dtype = None

    def fill(self, buf: np.ndarray, rows: int, cols: int, batch: int) -> None:
        """Fill `rows x cols x batch` leading elements.

        Floating buffers get values in [-1, 1); integer buffers get integers in [-2, 2].
        """
        count = rows * cols * batch
        if count > buf.size:
            raise ValueError(f"fill of {count} elements overruns buffer of {buf.size}")
        if buf.dtype.kind in "iu":
            buf[:count] = self._rng.integers(-2, 3, size=count)
        else:
            buf[:count] = self._rng.uniform(-1.0, 1.0, size=count)

    def alloc_device(self, count: int, dtype: np.dtype | None = None) -> np.ndarray:
        dtype = self.dtype if dtype is None else dtype
        if dtype is None:
            raise KeyError("Storage has no element type; resize it for the trial first")
        return np.zeros(count, dtype=dtype)

    @staticmethod
    def copy_data(dst: np.ndarray, src: np.ndarray, count: int) -> None:
        if count > dst.size or count > src.size:
            raise ValueError(f"copy of {count} elements overruns dst={dst.size} or src={src.size}")
        dst[:count] = src[:count]

    def copy_device_to_host_fwd_input(self) -> None:
        self.copy_data(self.host_input, self.device_input, self.device_input.size)

    def copy_device_to_host_bwd_input(self) -> None:
        self.copy_data(self.host_input, self.device_input, self.device_input.size)
        self.copy_data(self.host_upstream_grad, self.device_upstream_grad, self.device_upstream_grad.size)

    @property
    def device_input(self) -> np.ndarray:
        return self._buffer("device_input")

    @property
    def device_output(self) -> np.ndarray:
        return self._buffer("device_output")

    @property
    def device_acc_fwd(self) -> np.ndarray:
        return self._buffer("device_acc_fwd")

    @property
    def device_upstream_grad(self) -> np.ndarray:
        return self._buffer("device_upstream_grad")

    @property
    def device_acc_bwd(self) -> np.ndarray:
        return self._buffer("device_acc_bwd")

    @property
    def device_grad(self) -> np.ndarray:
        return self._buffer("device_grad")

    @property
    def device_bottom_mlp_grad(self) -> np.ndarray:
        return self._buffer("device_bottom_mlp_grad")

    @property
    def host_input(self) -> np.ndarray:
        return self._buffer("host_input")

    @property
    def host_upstream_grad(self) -> np.ndarray:
        return self._buffer("host_upstream_grad")

    @property
    def host_output_ref(self) -> np.ndarray:
        return self._buffer("host_output_ref")

    @property
    def host_grad_ref(self) -> np.ndarray:
        return self._buffer("host_grad_ref")

    @property
    def host_bottom_mlp_grad_ref(self) -> np.ndarray:
        return self._buffer("host_bottom_mlp_grad_ref")

    @property
    def host_acc_bwd_ref(self) -> np.ndarray:
        return self._buffer("host_acc_bwd_ref")
