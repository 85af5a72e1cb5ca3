from __future__ import annotations

from .config import ProblemConfig
from .device import GFX11_ARCHS, GFX908, UNSUPPORTED_ARCH, DeviceCapabilities
from .kernels import has_kernel_set
from .model import GateCheck

# The interaction kernels use no shared memory.
KERNEL_LDS_BYTES = 0

_GFX11_DTYPES = frozenset({"f16", "bf16", "i8"})


def check_device(config: ProblemConfig, device: DeviceCapabilities) -> GateCheck:
    arch = device.architecture_id()
    if arch == UNSUPPORTED_ARCH:
        return GateCheck(check_name="device", status="fail", details="unsupported architecture")
    if arch == GFX908 and config.dtype == "f64":
        return GateCheck(check_name="device", status="fail", details="gfx908 does not support f64")
    if arch in GFX11_ARCHS and (config.dtype not in _GFX11_DTYPES or config.tile_size != 16):
        return GateCheck(
            check_name="device",
            status="fail",
            details=f"{arch} only supports f16/bf16/i8 with tile size 16 (got {config.dtype}, {config.tile_size})",
        )
    return GateCheck(check_name="device", status="pass")


def check_sizes(config: ProblemConfig) -> GateCheck:
    t = config.tile_size
    ok = (
        config.m >= t
        and config.m % t == 0
        and config.k >= t
        and config.k % t == 0
        and config.block[0] % t == 0
    )
    if ok:
        return GateCheck(check_name="sizes", status="pass")
    return GateCheck(
        check_name="sizes",
        status="fail",
        details=f"m={config.m}, k={config.k} and block.x={config.block[0]} must be multiples of tile size {t} (m, k >= {t})",
    )


def check_lds(device: DeviceCapabilities, lds_bytes: int = KERNEL_LDS_BYTES) -> GateCheck:
    capacity = device.shared_memory_capacity()
    if lds_bytes <= capacity:
        return GateCheck(check_name="lds", status="pass")
    return GateCheck(check_name="lds", status="fail", details=f"needs {lds_bytes} bytes, device has {capacity}")


def check_kernel_available(config: ProblemConfig) -> GateCheck:
    if has_kernel_set(config.tile_size, config.dtype):
        return GateCheck(check_name="kernel_available", status="pass")
    return GateCheck(
        check_name="kernel_available",
        status="fail",
        details=f"no kernel set for tile_size={config.tile_size}, dtype={config.dtype}",
    )


def check_peak_throughput(config: ProblemConfig, device: DeviceCapabilities) -> GateCheck:
    # Efficiency needs a peak for the dtype; resolve it before any kernel runs.
    try:
        device.peak_gflops_per_sec(config.dtype)
    except KeyError as e:
        return GateCheck(check_name="peak_throughput", status="fail", details=str(e.args[0]))
    return GateCheck(check_name="peak_throughput", status="pass")


def check_all(config: ProblemConfig, device: DeviceCapabilities) -> list[GateCheck]:
    return [
        check_device(config, device),
        check_sizes(config),
        check_lds(device),
        check_kernel_available(config),
        check_peak_throughput(config, device),
    ]


def is_runnable(config: ProblemConfig, device: DeviceCapabilities) -> bool:
    return all(c.status == "pass" for c in check_all(config, device))


def format_gate_failures(checks: list[GateCheck]) -> str:
    lines: list[str] = ["Configuration skipped:"]
    for c in checks:
        if c.status != "fail":
            continue
        hint = f" - {c.details}" if c.details else ""
        lines.append(f"- {c.check_name}{hint}")
    return "\n".join(lines)
