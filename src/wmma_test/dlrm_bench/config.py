from __future__ import annotations

import os
from collections.abc import Iterable
from typing import Literal

import attrs
import ml_dtypes
import numpy as np

Direction = Literal["forward", "backward"]
DIRECTIONS: tuple[Direction, ...] = ("forward", "backward")


def ceil_div(n: int, d: int) -> int:
    return (n + d - 1) // d


@attrs.define(frozen=True, slots=True)
class DataType:
    key: str
    numpy_dtype: np.dtype
    epsilon: float
    bits: int

    @property
    def is_integer(self) -> bool:
        return self.numpy_dtype.kind in "iu"


# bf16 storage comes from ml_dtypes; i8 compares exactly (epsilon 0).
DTYPES: dict[str, DataType] = {
    "f16": DataType(key="f16", numpy_dtype=np.dtype(np.float16), epsilon=2.0**-10, bits=16),
    "bf16": DataType(key="bf16", numpy_dtype=np.dtype(ml_dtypes.bfloat16), epsilon=2.0**-7, bits=16),
    "f32": DataType(key="f32", numpy_dtype=np.dtype(np.float32), epsilon=2.0**-23, bits=32),
    "f64": DataType(key="f64", numpy_dtype=np.dtype(np.float64), epsilon=2.0**-52, bits=64),
    "i8": DataType(key="i8", numpy_dtype=np.dtype(np.int8), epsilon=0.0, bits=8),
}


def get_dtype(key: str) -> DataType:
    if key not in DTYPES:
        raise KeyError(f"Unknown dtype={key!r}. Known: {sorted(DTYPES)}")
    return DTYPES[key]


def _check_block(instance: ProblemConfig, attribute: attrs.Attribute, value: tuple[int, int]) -> None:
    if len(value) != 2 or any(v <= 0 for v in value):
        raise ValueError(f"{attribute.name} must be a positive (x, y) pair, got {value!r}")


@attrs.define(frozen=True, slots=True)
class ProblemConfig:
    """One benchmark trial: interaction shape, tiling, launch block and direction.

    `m` is the number of feature vectors, `k` the embedding width and `b` the
    batch count. Padded dimensions are derived once at construction.
    """

    m: int = attrs.field(validator=attrs.validators.gt(0))
    k: int = attrs.field(validator=attrs.validators.gt(0))
    b: int = attrs.field(validator=attrs.validators.gt(0))
    tile_size: int = attrs.field(validator=attrs.validators.gt(0))
    dtype: str = attrs.field(validator=attrs.validators.in_(DTYPES))
    block: tuple[int, int] = attrs.field(converter=tuple, validator=_check_block)
    direction: Direction = attrs.field(default="forward", validator=attrs.validators.in_(DIRECTIONS))
    m_padded: int = attrs.field(init=False)
    k_padded: int = attrs.field(init=False)

    @m_padded.default
    def _m_padded(self) -> int:
        return ceil_div(self.m, self.tile_size) * self.tile_size

    @k_padded.default
    def _k_padded(self) -> int:
        return ceil_div(self.k, self.tile_size) * self.tile_size

    @property
    def is_padded(self) -> bool:
        return self.m != self.m_padded or self.k != self.k_padded

    @property
    def input_batch_offset(self) -> int:
        return self.m * self.k

    @property
    def output_batch_offset(self) -> int:
        # Strict lower triangle of the interaction matrix plus the k passthrough features.
        return (self.m * (self.m - 1)) // 2 + self.k

    @property
    def upstream_batch_offset(self) -> int:
        return self.output_batch_offset

    @property
    def acc_batch_offset(self) -> int:
        return self.m * self.m

    @property
    def output_size(self) -> int:
        return self.m * self.m if self.direction == "forward" else self.m * self.k

    @property
    def data_type(self) -> DataType:
        return DTYPES[self.dtype]

    def to_label(self) -> str:
        return f"{self.direction}_t{self.tile_size}_{self.dtype}_{self.m}x{self.k}x{self.b}_bx{self.block[0]}"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


@attrs.define(frozen=True, slots=True)
class HarnessSettings:
    validation: bool = False
    repeats: int = 5
    seed: int = 0
    tolerance: float = 10.0
    device: str = "gfx90a"

    @property
    def effective_repeats(self) -> int:
        # Validation only compares the last repetition, one is enough.
        return 1 if self.validation else self.repeats

    @staticmethod
    def from_env() -> "HarnessSettings":
        repeats = int(os.environ.get("WMMA_TEST_REPEATS") or "5")
        if repeats <= 0:
            raise ValueError(f"WMMA_TEST_REPEATS must be positive, got {repeats}")
        return HarnessSettings(
            validation=_env_flag("WMMA_TEST_VALIDATION", False),
            repeats=repeats,
            seed=int(os.environ.get("WMMA_TEST_SEED") or "0"),
            tolerance=float(os.environ.get("WMMA_TEST_TOLERANCE") or "10.0"),
            device=os.environ.get("WMMA_TEST_DEVICE") or "gfx90a",
        )


@attrs.define(frozen=True, slots=True)
class ProblemShape:
    m: int
    k: int
    b: int


@attrs.define(frozen=True, slots=True)
class ProblemSet:
    shapes: tuple[ProblemShape, ...]
    blocks: tuple[tuple[int, int], ...]
    tile_sizes: tuple[int, ...]
    dtypes: tuple[str, ...]


PROBLEM_SETS: dict[str, ProblemSet] = {
    # Minimal set for fast smoke runs on the emulator.
    "smoke": ProblemSet(
        shapes=(ProblemShape(32, 32, 4),),
        blocks=((64, 1),),
        tile_sizes=(16,),
        dtypes=("f16", "f32"),
    ),
    # Includes misaligned and undersized shapes that the gate must skip.
    "edge": ProblemSet(
        shapes=(ProblemShape(16, 16, 1), ProblemShape(24, 32, 2), ProblemShape(32, 8, 2), ProblemShape(48, 40, 1)),
        blocks=((64, 1), (48, 1)),
        tile_sizes=(16, 32),
        dtypes=("f16", "f32"),
    ),
    # Typical DLRM interaction sizes (feature count x embedding width x batch).
    "dlrm": ProblemSet(
        shapes=(
            ProblemShape(32, 128, 64),
            ProblemShape(64, 128, 64),
            ProblemShape(128, 128, 32),
            ProblemShape(32, 64, 128),
        ),
        blocks=((64, 1), (128, 1), (256, 1)),
        tile_sizes=(16, 32),
        dtypes=("f16", "bf16", "f32"),
    ),
}


def iter_problems(
    problem_set: str, *, directions: Iterable[Direction] = DIRECTIONS, dtype: str = "all"
) -> Iterable[ProblemConfig]:
    if problem_set not in PROBLEM_SETS:
        raise KeyError(f"Unknown problem_set={problem_set!r}. Known: {sorted(PROBLEM_SETS)}")
    ps = PROBLEM_SETS[problem_set]
    dtypes = ps.dtypes if dtype == "all" else (get_dtype(dtype).key,)
    for direction in directions:
        for dt in dtypes:
            for tile in ps.tile_sizes:
                for block in ps.blocks:
                    for s in ps.shapes:
                        yield ProblemConfig(
                            m=s.m, k=s.k, b=s.b, tile_size=tile, dtype=dt, block=block, direction=direction
                        )
