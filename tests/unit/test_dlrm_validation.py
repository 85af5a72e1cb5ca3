from __future__ import annotations

import numpy as np
import pytest

from wmma_test.dlrm_bench.config import HarnessSettings, ProblemConfig
from wmma_test.dlrm_bench.device import DEVICE_PRESETS
from wmma_test.dlrm_bench.emulator import EmulatedStream
from wmma_test.dlrm_bench.harness import DlrmHarness
from wmma_test.dlrm_bench.reference import dlrm_bwd_reference, dlrm_fwd_reference
from wmma_test.dlrm_bench.report import ReportSession
from wmma_test.dlrm_bench.storage import DataStorage
from wmma_test.dlrm_bench.validation import compare_equal_launch_kernel


def _compare(a: np.ndarray, b: np.ndarray, dtype: str = "f32"):
    return compare_equal_launch_kernel(EmulatedStream(), a, b, 1, a.size, 1, dtype=dtype)


def test_compare_identical_passes() -> None:
    a = np.linspace(-1, 1, 64, dtype=np.float32)
    r = _compare(a, a.copy())
    assert r.passed
    assert r.max_relative_error == 0.0


def test_compare_relative_error_formula() -> None:
    a = np.array([1.0, 0.0], dtype=np.float64)
    b = np.array([1.5, 0.0], dtype=np.float64)
    r = _compare(a, b, dtype="f64")
    assert r.max_relative_error == pytest.approx(0.5 / 3.5)
    assert not r.passed


def test_compare_nan_fails() -> None:
    a = np.array([1.0, np.nan], dtype=np.float32)
    r = _compare(a, np.array([1.0, 1.0], dtype=np.float32))
    assert not r.passed
    assert r.max_relative_error == float("inf")


def test_compare_tolerance_scales_with_epsilon() -> None:
    a = np.array([1.0], dtype=np.float16)
    b = np.array([1.0 + 2.0**-10], dtype=np.float16)
    assert _compare(a, b, dtype="f16").passed
    assert not compare_equal_launch_kernel(EmulatedStream(), a, b, 1, 1, 1, dtype="f16", tolerance=0.1).passed


def test_forward_reference_layout() -> None:
    x = np.arange(1, 7, dtype=np.float64)  # m=3, k=2, b=1
    out = dlrm_fwd_reference(x, 3, 2, 1)
    rows = x.reshape(3, 2)
    # Row 0 passthrough, then (1,0), (2,0), (2,1) dot products.
    expected = [1, 2, rows[1] @ rows[0], rows[2] @ rows[0], rows[2] @ rows[1]]
    assert out.tolist() == expected


def test_backward_reference_rebuilds_symmetric_acc() -> None:
    m, k = 3, 2
    x = np.ones(m * k, dtype=np.float64)
    up = np.array([10.0, 20.0, 1.0, 2.0, 3.0])  # k passthrough + 3 triangle entries
    grad, bottom, acc = dlrm_bwd_reference(x, up, m, k, 1, acc_dtype=np.float64)
    a = acc.reshape(m, m)
    assert np.array_equal(a, a.T)
    assert np.all(np.diag(a) == 0)
    assert a[1, 0] == 1.0 and a[2, 0] == 2.0 and a[2, 1] == 3.0
    assert grad.reshape(m, k)[0].tolist() == [3.0, 3.0]
    assert bottom.tolist() == [13.0, 23.0]


def _validating_harness(direction: str) -> tuple[DlrmHarness, ProblemConfig]:
    settings = HarnessSettings(validation=True)
    harness = DlrmHarness(
        settings=settings,
        device=DEVICE_PRESETS["gfx90a"],
        storage=DataStorage(),
        stream=EmulatedStream(ordering="in_order"),
        session=ReportSession(validation=True),
    )
    cfg = ProblemConfig(m=32, k=32, b=2, tile_size=16, dtype="f32", block=(64, 1), direction=direction)
    return harness, cfg


def test_backward_error_is_max_of_three_comparisons() -> None:
    harness, cfg = _validating_harness("backward")
    harness.setup(cfg)
    harness.exec()
    harness.storage.device_grad[0] += 0.25
    harness.storage.device_bottom_mlp_grad[3] += 100.0
    harness.validate_results()

    state = harness.state
    assert [c.label for c in state.comparisons] == ["grad", "bottom_mlp_grad", "acc_bwd"]
    errors = [c.max_relative_error for c in state.comparisons]
    assert state.max_relative_error == max(errors)
    assert state.max_relative_error == errors[1]
    assert errors[0] > 0.0 and errors[0] < errors[1]
    assert errors[2] < errors[0]
    assert state.max_relative_error != sum(errors) / 3
    assert state.validation_result is False
    assert [f.label for f in state.failures] == ["grad", "bottom_mlp_grad"]


def test_forward_validation_passes_on_correct_output() -> None:
    harness, cfg = _validating_harness("forward")
    harness.setup(cfg)
    harness.exec()
    harness.validate_results()
    assert harness.state.validation_result is True
    assert harness.state.failures == []
    assert [c.label for c in harness.state.comparisons] == ["output"]
