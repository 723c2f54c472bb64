"""Regularisation, dropout and weight-norm constraint configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from .activations import DROPOUT_MODES, DROPOUT_NONE
from .errors import ConfigurationError
from .types import Array


@dataclass(frozen=True)
class DropoutConfig:
    """Dropout probability and mode; ``p`` must be zero exactly when mode is none."""

    p: float = 0.0
    mode: str = DROPOUT_NONE

    def __post_init__(self) -> None:
        mode = str(self.mode).lower()
        object.__setattr__(self, "mode", mode)
        if mode not in DROPOUT_MODES:
            raise ConfigurationError(
                f"Dropout mode must be one of {', '.join(DROPOUT_MODES)}, got {self.mode!r}"
            )
        if not 0.0 <= self.p < 1.0:
            raise ConfigurationError("Dropout p must be in [0, 1)")
        if self.p == 0.0 and mode != DROPOUT_NONE:
            raise ConfigurationError("A nonzero dropout p is required when mode is not none")
        if self.p != 0.0 and mode == DROPOUT_NONE:
            raise ConfigurationError("Dropout p must be 0 when mode is none")

    @property
    def active(self) -> bool:
        return self.mode != DROPOUT_NONE


@dataclass(frozen=True)
class RegL1Config:
    """Lasso penalty strength; ``biases`` extends it to bias terms."""

    strength: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        if self.strength < 0.0:
            raise ConfigurationError("L1 strength must be >= 0")


@dataclass(frozen=True)
class RegL2Config:
    """Ridge penalty strength; ``biases`` extends it to bias terms."""

    strength: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        if self.strength < 0.0:
            raise ConfigurationError("L2 strength must be >= 0")


@dataclass(frozen=True)
class NormConsConfig:
    """Per-neuron weight norm interval; inactive while ``max`` is zero."""

    min: float = 0.0
    max: float = 0.0
    biases: bool = False

    def __post_init__(self) -> None:
        if self.min < 0.0:
            raise ConfigurationError("Norm constraint min must be >= 0")
        if self.max < 0.0:
            raise ConfigurationError("Norm constraint max must be >= 0")
        if self.min > self.max:
            raise ConfigurationError("Norm constraint min must be <= max")

    @property
    def active(self) -> bool:
        return self.max > 0.0


def penalty_gradient(
    weights: Array,
    l1: float,
    l2: float,
) -> Array:
    """Return the additive L1/L2 gradient adjustment for ``weights``."""

    grad = np.zeros_like(weights)
    if l1 > 0.0:
        grad += l1 * np.sign(weights)
    if l2 > 0.0:
        grad += l2 * weights
    return grad


def apply_norm_constraint(weights: Array, biases: Array, config: NormConsConfig) -> None:
    """Rescale each neuron's weight row in place so its norm lies in ``[min, max]``.

    ``weights`` is ``(neurons, inputs)`` and ``biases`` is ``(neurons,)``; both
    are views into the flat weight arena.
    """

    if not config.active:
        return
    squares = np.sum(np.square(weights), axis=1)
    if config.biases:
        squares = squares + np.square(biases)
    norms = np.sqrt(squares)
    targets = np.clip(norms, config.min, config.max)
    scale = np.ones_like(norms)
    changed = (norms != targets) & (norms > 0.0)
    scale[changed] = targets[changed] / norms[changed]
    weights *= scale[:, None]
    if config.biases:
        biases *= scale


def config_from_mapping(cls, data: Mapping[str, Any] | None):
    """Build one of the frozen configs above from a plain mapping."""

    if data is None:
        return cls()
    if isinstance(data, cls):
        return data
    try:
        return cls(**dict(data))
    except TypeError as exc:
        raise ConfigurationError(f"Invalid {cls.__name__} options: {dict(data)}") from exc


__all__ = [
    "DropoutConfig",
    "NormConsConfig",
    "RegL1Config",
    "RegL2Config",
    "apply_norm_constraint",
    "config_from_mapping",
    "penalty_gradient",
]
