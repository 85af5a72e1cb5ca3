from __future__ import annotations

import math

from .model import Metrics


def calculate_gflops(m: int, n: int, k: int) -> float:
    return 2.0 * float(m) * float(n) * float(k) * 1.0e-9


def calculate_tflops_per_sec(m: int, n: int, k: int, elapsed_ms: float, repeats: int = 1) -> float:
    # GFLOP per millisecond is TFLOP per second.
    if elapsed_ms <= 0.0:
        raise ValueError(f"elapsed_ms must be positive, got {elapsed_ms}")
    return calculate_gflops(m, n, k) / elapsed_ms * float(repeats)


def round_half_away(x: float) -> int:
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


def efficiency_of(measured_tflops_per_sec: float, peak_gflops_per_sec: float) -> int:
    """Efficiency in percent, kept to three decimals by scaling before rounding.

    TFLOP/s over GFLOP/s is a thousandth of the ratio, so the 1e5 scale yields a
    percentage: 50 TFLOP/s against a 100 GFLOP/s peak gives 50000.
    """
    return round_half_away(measured_tflops_per_sec / peak_gflops_per_sec * 100000.0)


def measure(
    elapsed_ms: float, output_size: int, batch: int, k: int, repeats: int, peak_gflops_per_sec: float
) -> Metrics:
    total_gflops = calculate_gflops(output_size, batch, k)
    measured = calculate_tflops_per_sec(output_size, batch, k, elapsed_ms) * float(repeats)
    return Metrics(
        elapsed_ms=elapsed_ms,
        total_gflops=total_gflops,
        measured_tflops_per_sec=measured,
        efficiency=efficiency_of(measured, peak_gflops_per_sec),
    )
