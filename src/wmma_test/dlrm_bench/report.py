from __future__ import annotations

import sys
from typing import TextIO

from .config import ProblemConfig
from .model import TrialState

NA = "n/a"


def _format_float(v: float) -> str:
    return f"{v:g}"


def _direction_label(config: ProblemConfig) -> str:
    return "Forwards" if config.direction == "forward" else "Backwards"


def format_header(*, validation: bool) -> str:
    cols = ["TileSize", "DataT", "Direction", "MatM", "MatK", "MatB"]
    if validation:
        cols += ["maxRelativeDiff", "tolerance"]
    cols += ["elapsedMs", "Problem Size(GFlops)", "TFlops/s", "Efficiency(%)", "Result"]
    return ", ".join(cols)


def format_row(config: ProblemConfig, state: TrialState, *, validation: bool, tolerance: float) -> str:
    cols = [
        str(config.tile_size),
        config.dtype,
        _direction_label(config),
        str(config.m),
        str(config.k),
        str(config.b),
    ]
    if not state.run_flag:
        measured = 6 if validation else 4
        cols += [NA] * measured
    else:
        if validation:
            cols += [_format_float(state.max_relative_error), _format_float(tolerance)]
        cols += [
            _format_float(state.elapsed_ms),
            _format_float(state.total_gflops),
            _format_float(state.measured_tflops_per_sec),
            str(state.efficiency),
        ]
    cols.append(state.outcome(validation=validation))
    return ", ".join(cols)


class ReportSession:
    """One reporting sink per process run; the header is written before the first row only."""

    def __init__(self, sink: TextIO | None = None, *, validation: bool = False, tolerance: float = 10.0) -> None:
        self.sink = sys.stdout if sink is None else sink
        self.validation = validation
        self.tolerance = tolerance
        self.header_printed = False
        self.rows_written = 0

    def emit(self, config: ProblemConfig, state: TrialState) -> str:
        if not self.header_printed:
            self.sink.write(format_header(validation=self.validation) + "\n")
            self.header_printed = True
        row = format_row(config, state, validation=self.validation, tolerance=self.tolerance)
        self.sink.write(row + "\n")
        self.rows_written += 1
        return row
