from __future__ import annotations

import pytest

from wmma_test.dlrm_bench.performance import (
    calculate_gflops,
    calculate_tflops_per_sec,
    efficiency_of,
    measure,
    round_half_away,
)


def test_efficiency_scaling() -> None:
    assert efficiency_of(50.0, 100.0) == 50000


def test_round_half_away_from_zero() -> None:
    assert round_half_away(2.5) == 3
    assert round_half_away(3.5) == 4
    assert round_half_away(-2.5) == -3
    assert round_half_away(0.49) == 0


def test_gflops_formula() -> None:
    assert calculate_gflops(1000, 1000, 1000) == pytest.approx(2.0)
    assert calculate_gflops(32 * 32, 4, 32) == pytest.approx(2 * 1024 * 4 * 32 * 1e-9)


def test_tflops_per_sec_scales_with_repeats() -> None:
    one = calculate_tflops_per_sec(1000, 1000, 1000, 2.0)
    assert one == pytest.approx(1.0)
    assert calculate_tflops_per_sec(1000, 1000, 1000, 2.0, repeats=5) == pytest.approx(5.0)


def test_tflops_per_sec_rejects_zero_time() -> None:
    with pytest.raises(ValueError):
        calculate_tflops_per_sec(1, 1, 1, 0.0)


def test_measure_folds_repeats_into_throughput() -> None:
    m = measure(2.0, 1000 * 1000, 1000, 1, 5, 10000.0)
    assert m.elapsed_ms == 2.0
    assert m.total_gflops == pytest.approx(2.0)
    assert m.measured_tflops_per_sec == pytest.approx(5.0)
    assert m.efficiency == 50


def test_measure_small_problem_rounds_efficiency() -> None:
    m = measure(2.0, 32 * 32, 4, 32, 5, 100.0)
    assert m.total_gflops == pytest.approx(2.62144e-4)
    assert m.measured_tflops_per_sec == pytest.approx(6.5536e-4)
    assert m.efficiency == 1
