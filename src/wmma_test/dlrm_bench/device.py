"""Accelerator capability profiles.

Capability detection is not done here: a profile is either one of the
built-in presets or a JSON file validated against
`schemas/device_profile.schema.json`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import attrs
from jsonschema import Draft202012Validator

UNSUPPORTED_ARCH = "unsupported"

# Legacy family without f64 matrix support.
GFX908 = "gfx908"
GFX90A = "gfx90a"
GFX942 = "gfx942"
# Modern family: f16/bf16/i8 only, 16x16 tiles only.
GFX11_ARCHS: frozenset[str] = frozenset({"gfx1100", "gfx1101", "gfx1102"})

KNOWN_ARCHS: frozenset[str] = frozenset({GFX908, GFX90A, GFX942, *GFX11_ARCHS, UNSUPPORTED_ARCH})


class DeviceCapabilities(Protocol):
    def architecture_id(self) -> str: ...

    def warp_size(self) -> int: ...

    def shared_memory_capacity(self) -> int: ...

    def peak_gflops_per_sec(self, dtype: str) -> float: ...


@attrs.define(frozen=True, slots=True)
class DeviceProfile:
    name: str
    arch: str
    wave_size: int
    shared_mem_bytes: int
    peak_gflops: dict[str, float] = attrs.field(factory=dict)

    def architecture_id(self) -> str:
        return self.arch if self.arch in KNOWN_ARCHS else UNSUPPORTED_ARCH

    def warp_size(self) -> int:
        return self.wave_size

    def shared_memory_capacity(self) -> int:
        return self.shared_mem_bytes

    def peak_gflops_per_sec(self, dtype: str) -> float:
        if dtype not in self.peak_gflops:
            raise KeyError(f"Device profile {self.name!r} has no peak throughput for dtype={dtype!r}")
        return self.peak_gflops[dtype]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "arch": self.arch,
            "wave_size": self.wave_size,
            "shared_mem_bytes": self.shared_mem_bytes,
            "peak_gflops": dict(self.peak_gflops),
        }


# Peak dense matrix throughput (GFLOP/s) per element type.
DEVICE_PRESETS: dict[str, DeviceProfile] = {
    "gfx908": DeviceProfile(
        name="gfx908",
        arch=GFX908,
        wave_size=64,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 184600.0, "bf16": 92300.0, "f32": 46100.0, "i8": 184600.0},
    ),
    "gfx90a": DeviceProfile(
        name="gfx90a",
        arch=GFX90A,
        wave_size=64,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 181000.0, "bf16": 181000.0, "f32": 45300.0, "f64": 45300.0, "i8": 181000.0},
    ),
    "gfx942": DeviceProfile(
        name="gfx942",
        arch=GFX942,
        wave_size=64,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 1307400.0, "bf16": 1307400.0, "f32": 163400.0, "f64": 163400.0, "i8": 2614900.0},
    ),
    "gfx1100": DeviceProfile(
        name="gfx1100",
        arch="gfx1100",
        wave_size=32,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 122800.0, "bf16": 122800.0, "f32": 61400.0, "i8": 122800.0},
    ),
    "gfx1101": DeviceProfile(
        name="gfx1101",
        arch="gfx1101",
        wave_size=32,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 86800.0, "bf16": 86800.0, "f32": 43400.0, "i8": 86800.0},
    ),
    "gfx1102": DeviceProfile(
        name="gfx1102",
        arch="gfx1102",
        wave_size=32,
        shared_mem_bytes=65536,
        peak_gflops={"f16": 43500.0, "bf16": 43500.0, "f32": 21800.0, "i8": 43500.0},
    ),
    "unsupported": DeviceProfile(
        name="unsupported",
        arch=UNSUPPORTED_ARCH,
        wave_size=64,
        shared_mem_bytes=65536,
        peak_gflops={},
    ),
}


def _default_profile_schema_path() -> Path:
    return Path(__file__).resolve().parent / "schemas" / "device_profile.schema.json"


def validate_profile_schema(payload: dict[str, Any], *, schema_path: Path | None = None) -> None:
    schema_path = _default_profile_schema_path() if schema_path is None else schema_path
    schema = json.loads(schema_path.read_text())
    Draft202012Validator(schema).validate(payload)


def load_device_profile(path: Path) -> DeviceProfile:
    payload = json.loads(path.read_text())
    validate_profile_schema(payload)
    return DeviceProfile(
        name=str(payload["name"]),
        arch=str(payload["arch"]),
        wave_size=int(payload["wave_size"]),
        shared_mem_bytes=int(payload["shared_mem_bytes"]),
        peak_gflops={str(k): float(v) for k, v in payload.get("peak_gflops", {}).items()},
    )


def resolve_device(name_or_path: str) -> DeviceProfile:
    """Return a preset by name, or load a JSON profile when given a path."""
    if name_or_path in DEVICE_PRESETS:
        return DEVICE_PRESETS[name_or_path]
    p = Path(name_or_path).expanduser()
    if p.suffix == ".json":
        if not p.exists():
            raise FileNotFoundError(f"Device profile points to missing file: {p}")
        return load_device_profile(p)
    raise KeyError(f"Unknown device={name_or_path!r}. Known presets: {sorted(DEVICE_PRESETS)}")
