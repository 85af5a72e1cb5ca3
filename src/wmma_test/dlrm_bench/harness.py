"""Single-trial lifecycle: setup -> exec -> validate_results -> report_results -> tear_down.

The harness owns nothing process-wide. Storage, stream, device profile and
report session are handed in, so trials sharing them run one after another.
Accelerator errors are not caught here; they end the run.
"""

from __future__ import annotations

import logging

from . import gate
from .config import HarnessSettings, ProblemConfig
from .device import DeviceCapabilities, resolve_device
from .dispatch import DispatchPlan, build_plan, timed_dispatch
from .emulator import EmulatedStream
from .kernels import KernelSet, get_kernel_set
from .model import TrialState
from .performance import measure
from .report import ReportSession
from .storage import DataStorage
from .validation import validate_backward, validate_forward

logger = logging.getLogger(__name__)


class DlrmHarness:
    def __init__(
        self,
        *,
        settings: HarnessSettings,
        device: DeviceCapabilities,
        storage: DataStorage,
        stream: EmulatedStream,
        session: ReportSession,
    ) -> None:
        self.settings = settings
        self.device = device
        self.storage = storage
        self.stream = stream
        self.session = session
        self.config: ProblemConfig | None = None
        self.kernels: KernelSet | None = None
        self.plan: DispatchPlan | None = None
        self.peak_gflops_per_sec: float | None = None
        self.state = TrialState()
        self.reset()

    @classmethod
    def from_settings(cls, settings: HarnessSettings, *, session: ReportSession | None = None) -> "DlrmHarness":
        device = resolve_device(settings.device)
        return cls(
            settings=settings,
            device=device,
            storage=DataStorage(seed=settings.seed),
            stream=EmulatedStream(shared_memory_capacity=device.shared_memory_capacity()),
            session=session
            or ReportSession(validation=settings.validation, tolerance=settings.tolerance),
        )

    def reset(self) -> None:
        self.config = None
        self.kernels = None
        self.plan = None
        self.peak_gflops_per_sec = None
        self.state = TrialState(repeats=self.settings.effective_repeats)

    def _require_config(self) -> ProblemConfig:
        if self.config is None:
            raise RuntimeError("setup() must be called before running the trial")
        return self.config

    def setup(self, config: ProblemConfig) -> None:
        self.reset()
        self.config = config

        self.state.gate_checks = gate.check_all(config, self.device)
        self.state.run_flag = all(c.status == "pass" for c in self.state.gate_checks)
        if not self.state.run_flag:
            logger.warning("%s: %s", config.to_label(), gate.format_gate_failures(self.state.gate_checks))
            return

        self.kernels = get_kernel_set(config.tile_size, config.dtype)
        self.peak_gflops_per_sec = self.device.peak_gflops_per_sec(config.dtype)
        storage = self.storage
        storage.reseed(self.settings.seed)

        if config.direction == "forward":
            storage.resize_fwd_storage(config)
            storage.fill(storage.device_input, config.m, config.k, config.b)
            if self.settings.validation:
                self.stream.synchronize()
                storage.copy_device_to_host_fwd_input()
        else:
            storage.resize_bwd_storage(config)
            storage.fill(storage.device_input, config.m, config.k, config.b)
            storage.fill(storage.device_upstream_grad, 1, config.upstream_batch_offset, config.b)
            if self.settings.validation:
                self.stream.synchronize()
                storage.copy_device_to_host_bwd_input()

        self.plan = build_plan(config, self.kernels, storage, self.device.warp_size())

    def exec(self) -> None:
        config = self._require_config()
        if not self.state.run_flag:
            return
        if self.plan is None or self.peak_gflops_per_sec is None:
            raise RuntimeError("setup() did not build a dispatch plan for this trial")

        elapsed_ms = timed_dispatch(self.plan, self.stream, self.state.repeats)
        metrics = measure(
            elapsed_ms,
            config.output_size,
            config.b,
            config.k,
            self.state.repeats,
            self.peak_gflops_per_sec,
        )
        self.state.apply_metrics(metrics)

    def validate_results(self) -> None:
        config = self._require_config()
        if not (self.settings.validation and self.state.run_flag):
            return
        if config.direction == "forward":
            validate_forward(config, self.storage, self.stream, self.state, tolerance=self.settings.tolerance)
        else:
            validate_backward(config, self.storage, self.stream, self.state, tolerance=self.settings.tolerance)

    def report_results(self) -> str:
        config = self._require_config()
        row = self.session.emit(config, self.state)
        logger.info("%s: %s", config.to_label(), self.state.outcome(validation=self.settings.validation))
        return row

    def tear_down(self) -> None:
        self.storage.release()

    def run(self, config: ProblemConfig) -> TrialState:
        with self.storage.claim():
            try:
                self.setup(config)
                self.exec()
                self.validate_results()
                self.report_results()
            finally:
                self.tear_down()
        return self.state
