"""Core typing contracts for EasyMLP."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping

import numpy as np

Array = np.ndarray

EPSILON = 1e-8
BIN_DECISION_BORDER = 0.5

REGRESSION = "regression"
BINARY = "binary"
CATEGORICAL = "categorical"
TASK_TYPES = (REGRESSION, BINARY, CATEGORICAL)


def check_task_type(task_type: str) -> str:
    """Return ``task_type`` or raise when it is not a known task."""

    if task_type not in TASK_TYPES:
        from .errors import ConfigurationError

        raise ConfigurationError(
            f"Unknown task type {task_type!r}; expected one of {', '.join(TASK_TYPES)}"
        )
    return task_type


def round_half_away(value: float) -> int:
    """Round half away from zero (``2.5 -> 3``, ``-2.5 -> -3``)."""

    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass(frozen=True)
class Interval:
    """Numeric interval with open/closed bounds."""

    min: float
    max: float
    min_closed: bool = True
    max_closed: bool = True

    def contains(self, value: float) -> bool:
        lower = value >= self.min if self.min_closed else value > self.min
        upper = value <= self.max if self.max_closed else value < self.max
        return lower and upper

    def __str__(self) -> str:
        left = "[" if self.min_closed else "("
        right = "]" if self.max_closed else ")"
        return f"{left}{self.min}, {self.max}{right}"


@dataclass(frozen=True)
class ProgressInfo:
    """Structured progress record emitted after every training epoch."""

    model_name: str
    attempt: int
    max_attempts: int
    epoch: int
    max_epochs: int
    cost: float
    train_metrics: Mapping[str, float] = field(default_factory=dict)
    validation_metrics: Mapping[str, float] = field(default_factory=dict)
    best_attempt: int = 0
    best_epoch: int = 0
    stopped: bool = False

    def as_metrics(self) -> Dict[str, float]:
        """Flatten the record into a numeric mapping suitable for sinks."""

        payload: Dict[str, float] = {
            "attempt": float(self.attempt),
            "cost": float(self.cost),
            "best_attempt": float(self.best_attempt),
            "best_epoch": float(self.best_epoch),
        }
        payload.update({f"train_{k}": float(v) for k, v in self.train_metrics.items()})
        payload.update(
            {f"val_{k}": float(v) for k, v in self.validation_metrics.items()}
        )
        return payload


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`easymlp.training.pipelines.run_pipeline`."""

    epochs: int
    metrics_path: str
    manifest_path: str
    summary_path: str = ""
    model_path: str = ""


__all__ = [
    "Array",
    "BIN_DECISION_BORDER",
    "BINARY",
    "CATEGORICAL",
    "EPSILON",
    "Interval",
    "ProgressInfo",
    "REGRESSION",
    "RunResult",
    "TASK_TYPES",
    "check_task_type",
    "round_half_away",
]
