"""Loss registry pairing every task type with its output-layer loss."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from ..core.types import BINARY, BIN_DECISION_BORDER, CATEGORICAL, EPSILON, REGRESSION, Array

LossFn = Callable[[Array, Array], Array]
GradFn = Callable[[Array, Array, Array], Array]


@dataclass(frozen=True)
class Loss:
    """Element-wise loss value plus the gradient w.r.t. the output sums."""

    name: str
    fn: LossFn
    grad: GradFn

    def __call__(self, ideal: Array, computed: Array) -> Array:
        return self.fn(ideal, computed)

    def z_gradient(self, derivative: Array, ideal: Array, computed: Array) -> Array:
        return self.grad(derivative, ideal, computed)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn, grad: GradFn) -> None:
        self._registry[name] = Loss(name, fn, grad)

    def get(self, name: str) -> Loss:
        try:
            return self._registry[name]
        except KeyError as exc:
            raise KeyError(f"Unknown loss: {name}") from exc

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def resolve(self, name: str, *, task_type: str) -> Loss:
        if name == "auto":
            if task_type == REGRESSION:
                name = "squared_error"
            elif task_type == CATEGORICAL:
                name = "softmax_ce"
            elif task_type == BINARY:
                name = "sigmoid_ce"
            else:
                raise ValueError(f"Unknown task type: {task_type}")
        if name not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[name]


REGISTRY = LossRegistry()


def _squared_error(ideal: Array, computed: Array) -> Array:
    return np.square(ideal - computed) / 2.0


def _squared_error_grad(derivative: Array, ideal: Array, computed: Array) -> Array:
    return derivative * (computed - ideal)


def _sigmoid_ce(ideal: Array, computed: Array) -> Array:
    clipped = np.clip(computed, EPSILON, 1.0 - EPSILON)
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(clipped), -np.log(1.0 - clipped))


def _softmax_ce(ideal: Array, computed: Array) -> Array:
    clipped = np.clip(computed, EPSILON, 1.0 - EPSILON)
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(clipped), 0.0)


def _cross_entropy_grad(derivative: Array, ideal: Array, computed: Array) -> Array:
    return computed - ideal


REGISTRY.register("squared_error", _squared_error, _squared_error_grad)
REGISTRY.register("sigmoid_ce", _sigmoid_ce, _cross_entropy_grad)
REGISTRY.register("softmax_ce", _softmax_ce, _cross_entropy_grad)

OUTPUT_ACTIVATIONS = {REGRESSION: "linear", BINARY: "sigmoid", CATEGORICAL: "softmax"}

__all__ = ["Loss", "LossRegistry", "OUTPUT_ACTIVATIONS", "REGISTRY"]
