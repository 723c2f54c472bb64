"""Per-feature filters standardising training data and inverting predictions."""

from __future__ import annotations

from copy import deepcopy
from typing import Iterable

import numpy as np

from ..core.errors import DataError, NumericInstabilityError
from ..core.stats import BasicStat
from ..core.types import BIN_DECISION_BORDER

INPUT_USE = "input"
OUTPUT_USE = "output"


def _checked_argument(value, label: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if not np.all(np.isfinite(arr)):
        raise DataError(f"{label} argument is not a finite value")
    return arr


def _checked_result(arr: np.ndarray, label: str):
    if not np.all(np.isfinite(arr)):
        raise NumericInstabilityError(f"Filter {label} produced a non-finite value")
    return float(arr) if arr.ndim == 0 else arr


class FeatureFilter:
    """Statistic accumulator plus a forward and inverse transform."""

    def __init__(self, use: str = INPUT_USE) -> None:
        if use not in {INPUT_USE, OUTPUT_USE}:
            raise ValueError(f"Unknown filter use: {use}")
        self.use = use
        self.stat = BasicStat()

    def reset(self) -> None:
        self.stat.reset()

    def update(self, value: float) -> None:
        self.stat.add(value)

    def update_many(self, values: Iterable[float]) -> None:
        for value in values:
            self.update(value)

    def apply_filter(self, value, centered: bool = True):
        raise NotImplementedError

    def apply_reverse(self, value, centered: bool = True):
        raise NotImplementedError

    @property
    def binary_border(self) -> float:
        return BIN_DECISION_BORDER

    def deep_clone(self) -> "FeatureFilter":
        return deepcopy(self)


class RealFeatureFilter(FeatureFilter):
    """Z-score followed by a rescale of the observed range to ``[-1, 1]``."""

    def update_many(self, values: Iterable[float]) -> None:
        self.stat.add_many(values)

    def _std_bounds(self) -> tuple[float, float]:
        sd = self.stat.stddev
        return (self.stat.min - self.stat.mean) / sd, (self.stat.max - self.stat.mean) / sd

    def apply_filter(self, value, centered: bool = True):
        arr = _checked_argument(value, "Value")
        if self.stat.span == 0.0:
            return _checked_result(np.ones_like(arr), "apply_filter")
        z = (arr - self.stat.mean) / self.stat.stddev
        lo, hi = self._std_bounds()
        if centered:
            out = -1.0 + (z - lo) * 2.0 / (hi - lo)
        else:
            out = np.where(z >= 0.0, z / hi, z / abs(lo))
        return _checked_result(out, "apply_filter")

    def apply_reverse(self, value, centered: bool = True):
        arr = _checked_argument(value, "Value")
        if self.stat.span == 0.0:
            return _checked_result(np.full_like(arr, self.stat.mean), "apply_reverse")
        lo, hi = self._std_bounds()
        if centered:
            z = lo + (arr + 1.0) * (hi - lo) / 2.0
        else:
            z = np.where(arr >= 0.0, arr * hi, arr * abs(lo))
        out = z * self.stat.stddev + self.stat.mean
        return _checked_result(out, "apply_reverse")


class BinFeatureFilter(FeatureFilter):
    """0/1 feature. Inputs map to -1/1, outputs pass through unchanged."""

    def update(self, value: float) -> None:
        if value not in (0.0, 1.0):
            raise DataError(f"Binary feature value must be 0 or 1, got {value}")
        super().update(value)

    def apply_filter(self, value, centered: bool = True):
        arr = _checked_argument(value, "Value")
        if self.use == OUTPUT_USE:
            return _checked_result(arr.copy(), "apply_filter")
        return _checked_result(np.where(arr == 0.0, -1.0, 1.0), "apply_filter")

    def apply_reverse(self, value, centered: bool = True):
        arr = _checked_argument(value, "Value")
        if self.use == OUTPUT_USE:
            return _checked_result(arr.copy(), "apply_reverse")
        return _checked_result(np.where(arr < 0.0, 0.0, 1.0), "apply_reverse")

    @property
    def binary_border(self) -> float:
        return 0.0 if self.use == INPUT_USE else BIN_DECISION_BORDER


__all__ = [
    "BinFeatureFilter",
    "FeatureFilter",
    "INPUT_USE",
    "OUTPUT_USE",
    "RealFeatureFilter",
]
