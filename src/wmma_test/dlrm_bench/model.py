from __future__ import annotations

from typing import Any, Literal

import attrs

CheckStatus = Literal["pass", "fail"]
Outcome = Literal["SKIPPED", "PASSED", "FAILED", "BENCH"]


@attrs.define(frozen=True, slots=True)
class GateCheck:
    check_name: str
    status: CheckStatus
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"check_name": self.check_name, "status": self.status, "details": self.details}


@attrs.define(frozen=True, slots=True)
class Metrics:
    elapsed_ms: float
    total_gflops: float
    measured_tflops_per_sec: float
    efficiency: int


@attrs.define(frozen=True, slots=True)
class ComparisonResult:
    label: str
    passed: bool
    max_relative_error: float


@attrs.define(frozen=True, slots=True)
class ValidationFailure:
    label: str
    max_relative_error: float
    threshold: float

    def message(self) -> str:
        return f"{self.label}: max relative error {self.max_relative_error:g} exceeds {self.threshold:g}"


@attrs.define(slots=True)
class TrialState:
    """Mutable per-trial state, populated by setup -> exec -> validate -> report."""

    run_flag: bool = True
    gate_checks: list[GateCheck] = attrs.field(factory=list)
    repeats: int = 5
    elapsed_ms: float = 0.0
    total_gflops: float = 0.0
    measured_tflops_per_sec: float = 0.0
    efficiency: int = -1
    validation_result: bool = False
    max_relative_error: float = 0.0
    comparisons: list[ComparisonResult] = attrs.field(factory=list)
    failures: list[ValidationFailure] = attrs.field(factory=list)

    def apply_metrics(self, metrics: Metrics) -> None:
        self.elapsed_ms = metrics.elapsed_ms
        self.total_gflops = metrics.total_gflops
        self.measured_tflops_per_sec = metrics.measured_tflops_per_sec
        self.efficiency = metrics.efficiency

    def outcome(self, *, validation: bool) -> Outcome:
        if not self.run_flag:
            return "SKIPPED"
        if validation:
            return "PASSED" if self.validation_result else "FAILED"
        return "BENCH"
