"""Running statistics used by filters, error statistics and metrics."""

from __future__ import annotations

import math
from copy import deepcopy
from typing import Iterable, Sequence

import numpy as np


class BasicStat:
    """Accumulate count, sums, extremes and derived moments of a value stream."""

    def __init__(self, values: Iterable[float] | None = None) -> None:
        self.reset()
        if values is not None:
            self.add_many(values)

    def reset(self) -> None:
        self.count = 0
        self.nonzero_count = 0
        self.sum = 0.0
        self.sum_of_squares = 0.0
        self.min = math.inf
        self.max = -math.inf

    def add(self, value: float) -> None:
        value = float(value)
        self.count += 1
        if value != 0.0:
            self.nonzero_count += 1
        self.sum += value
        self.sum_of_squares += value * value
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    def add_many(self, values: Iterable[float]) -> None:
        if not isinstance(values, np.ndarray):
            values = list(values)
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        if arr.size == 0:
            return
        self.count += int(arr.size)
        self.nonzero_count += int(np.count_nonzero(arr))
        self.sum += float(np.sum(arr))
        self.sum_of_squares += float(np.sum(arr * arr))
        self.min = min(self.min, float(np.min(arr)))
        self.max = max(self.max, float(np.max(arr)))

    def merge(self, other: "BasicStat") -> None:
        self.count += other.count
        self.nonzero_count += other.nonzero_count
        self.sum += other.sum
        self.sum_of_squares += other.sum_of_squares
        self.min = min(self.min, other.min)
        self.max = max(self.max, other.max)

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0

    @property
    def mean_square(self) -> float:
        return self.sum_of_squares / self.count if self.count else 0.0

    @property
    def rms(self) -> float:
        return math.sqrt(self.mean_square)

    @property
    def variance(self) -> float:
        if not self.count:
            return 0.0
        # Clamp tiny negative values caused by cancellation.
        return max(0.0, self.mean_square - self.mean * self.mean)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)

    @property
    def span(self) -> float:
        return self.max - self.min if self.count else 0.0

    def deep_clone(self) -> "BasicStat":
        return deepcopy(self)

    def __repr__(self) -> str:
        return (
            f"BasicStat(count={self.count}, mean={self.mean:.6g}, "
            f"stddev={self.stddev:.6g}, min={self.min:.6g}, max={self.max:.6g})"
        )


def weighted_average(values: Sequence[float], weights: Sequence[float]) -> float:
    """Return the weighted average of ``values``; plain mean for zero total weight."""

    vals = np.asarray(values, dtype=np.float64)
    wts = np.asarray(weights, dtype=np.float64)
    total = float(np.sum(wts))
    if total == 0.0:
        return float(np.mean(vals)) if vals.size else 0.0
    return float(np.sum(vals * wts) / total)


__all__ = ["BasicStat", "weighted_average"]
