"""Activation functions for EasyMLP.

Every activation maps weighted sums to activations and exposes the matching
derivative. Scalar forms are element-wise numpy functions, so they accept both
floats and arrays. ``compute_layer`` works on a ``(batch, neurons)`` matrix of
sums and is the entry point used by the training engine.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Type

import numpy as np

from .errors import ConfigurationError, UnsupportedOperationError
from .types import Array, Interval

_INF = math.inf

# Dropout modes understood by :meth:`Activation.dropout`.
DROPOUT_NONE = "none"
DROPOUT_BERNOULLI = "bernoulli"
DROPOUT_GAUSSIAN = "gaussian"
DROPOUT_MODES = (DROPOUT_NONE, DROPOUT_BERNOULLI, DROPOUT_GAUSSIAN)


class Activation:
    """Base class of the activation family."""

    name: str = ""
    output_range: Interval = Interval(-_INF, _INF, False, False)
    requires_whole_layer: bool = False
    suitable_for_hidden: bool = True

    def compute(self, x):
        raise NotImplementedError

    def derivative(self, x, a):
        raise NotImplementedError

    def compute_layer(self, sums: Array) -> tuple[Array, Array]:
        """Return ``(activations, derivatives)`` for a matrix of sums."""

        activations = self.compute(sums)
        return activations, self.derivative(sums, activations)

    def init_stddev(self, fan_in: int, fan_out: int) -> float:
        """Standard deviation of the normal weight initialisation (He)."""

        return math.sqrt(2.0 / fan_in)

    def dropout(
        self,
        mode: str,
        p: float,
        rng: np.random.Generator,
        activations: Array,
        derivatives: Array | None = None,
    ) -> tuple[Array, Array | None, Array]:
        """Apply training-time dropout.

        Returns the adjusted activations and derivatives together with the
        boolean neuron switches used by the backward pass.
        """

        shape = activations.shape
        if mode == DROPOUT_NONE or p <= 0.0:
            return activations, derivatives, np.ones(shape, dtype=bool)
        if mode == DROPOUT_BERNOULLI:
            switches = rng.random(shape) >= p
            coeff = 1.0 / (1.0 - p)
            gate = np.where(switches, coeff, 0.0)
            activations = activations * gate
            if derivatives is not None:
                derivatives = derivatives * gate
            return activations, derivatives, switches
        if mode == DROPOUT_GAUSSIAN:
            noise = rng.normal(1.0, math.sqrt(p / (1.0 - p)), size=shape)
            activations = activations * noise
            if derivatives is not None:
                derivatives = derivatives * noise
            return activations, derivatives, np.ones(shape, dtype=bool)
        raise ConfigurationError(f"Unknown dropout mode: {mode}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class _XavierInit:
    def init_stddev(self, fan_in: int, fan_out: int) -> float:
        return math.sqrt(2.0 / (fan_in + fan_out))


class _LeCunInit:
    def init_stddev(self, fan_in: int, fan_out: int) -> float:
        return math.sqrt(1.0 / fan_in)


class BentIdentity(Activation):
    name = "bentidentity"

    def compute(self, x):
        return (np.sqrt(np.square(x) + 1.0) - 1.0) / 2.0 + x

    def derivative(self, x, a):
        return x / (2.0 * np.sqrt(np.square(x) + 1.0)) + 1.0


class ELU(_LeCunInit, Activation):
    name = "elu"
    alpha = 1.0
    output_range = Interval(-1.0, _INF, False, False)

    def compute(self, x):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x < 0.0, self.alpha * np.expm1(np.minimum(x, 0.0)), x)

    def derivative(self, x, a):
        return np.where(np.asarray(x) < 0.0, np.asarray(a) + self.alpha, 1.0)


class ElliotSig(_XavierInit, Activation):
    name = "elliotsig"
    output_range = Interval(-1.0, 1.0, False, False)

    def compute(self, x):
        return x / (1.0 + np.abs(x))

    def derivative(self, x, a):
        return 1.0 / np.square(1.0 + np.abs(x))


class GELU(Activation):
    """Gaussian error linear unit, tanh approximation."""

    name = "gelu"
    output_range = Interval(-0.170041, _INF, True, False)
    _pf = math.sqrt(2.0 / math.pi)
    _c = 0.044715

    def _inner(self, x):
        return self._pf * (x + self._c * x * x * x)

    def compute(self, x):
        return 0.5 * x * (1.0 + np.tanh(self._inner(x)))

    def derivative(self, x, a):
        t = np.tanh(self._inner(x))
        du = self._pf * (1.0 + 3.0 * self._c * x * x)
        return 0.5 * (1.0 + t) + 0.5 * x * (1.0 - t * t) * du


class HardLim(_XavierInit, Activation):
    name = "hardlim"
    output_range = Interval(0.0, 1.0)
    suitable_for_hidden = False

    def compute(self, x):
        return np.where(np.asarray(x) >= 0.0, 1.0, 0.0)

    def derivative(self, x, a):
        return np.zeros_like(np.asarray(x, dtype=np.float64))


class LeakyReLU(Activation):
    name = "leakyrelu"
    negative_slope = 0.01

    def compute(self, x):
        return np.where(np.asarray(x) < 0.0, self.negative_slope * np.asarray(x), x)

    def derivative(self, x, a):
        return np.where(np.asarray(x) < 0.0, self.negative_slope, 1.0)


class Linear(_XavierInit, Activation):
    name = "linear"
    suitable_for_hidden = False

    def compute(self, x):
        return np.array(x, dtype=np.float64)

    def derivative(self, x, a):
        return np.ones_like(np.asarray(x, dtype=np.float64))


class RadBas(_XavierInit, Activation):
    name = "radbas"
    output_range = Interval(0.0, 1.0, False, True)

    def compute(self, x):
        return np.exp(-np.square(x))

    def derivative(self, x, a):
        return -2.0 * np.asarray(a) * x


class ReLU(Activation):
    name = "relu"
    output_range = Interval(0.0, _INF, True, False)

    def compute(self, x):
        return np.maximum(0.0, x)

    def derivative(self, x, a):
        return np.where(np.asarray(x) > 0.0, 1.0, 0.0)


class SELU(_LeCunInit, Activation):
    name = "selu"
    alpha = 1.6732632423543772
    scale = 1.0507009873554805
    alpha_prime = -scale * alpha
    output_range = Interval(alpha_prime, _INF, False, False)

    def compute(self, x):
        x = np.asarray(x, dtype=np.float64)
        return self.scale * np.where(x > 0.0, x, self.alpha * np.expm1(np.minimum(x, 0.0)))

    def derivative(self, x, a):
        x = np.asarray(x, dtype=np.float64)
        return self.scale * np.where(x > 0.0, 1.0, self.alpha * np.exp(np.minimum(x, 0.0)))

    def dropout(self, mode, p, rng, activations, derivatives=None):
        if mode != DROPOUT_BERNOULLI or p <= 0.0:
            return super().dropout(mode, p, rng, activations, derivatives)
        # Alpha dropout keeps the self-normalising mean and variance.
        keep_p = 1.0 - p
        a = math.sqrt(1.0 / (keep_p * (p * self.alpha_prime**2 + 1.0)))
        b = -a * p * self.alpha_prime
        switches = rng.random(activations.shape) >= p
        activations = np.where(switches, activations, self.alpha_prime) * a + b
        if derivatives is not None:
            derivatives = np.where(switches, derivatives * a, 0.0)
        return activations, derivatives, switches


class Sigmoid(_XavierInit, Activation):
    name = "sigmoid"
    output_range = Interval(0.0, 1.0, False, False)

    def compute(self, x):
        x = np.asarray(x, dtype=np.float64)
        # Split by sign so exp never overflows.
        pos = 1.0 / (1.0 + np.exp(-np.abs(x)))
        return np.where(x >= 0.0, pos, 1.0 - pos)

    def derivative(self, x, a):
        a = np.asarray(a)
        return a * (1.0 - a)


class Sine(_XavierInit, Activation):
    name = "sine"
    output_range = Interval(-1.0, 1.0)

    def compute(self, x):
        return np.sin(x)

    def derivative(self, x, a):
        return np.cos(x)


class Softmax(_XavierInit, Activation):
    """Softmax over the whole layer; not decomposable per element."""

    name = "softmax"
    output_range = Interval(0.0, 1.0, False, False)
    requires_whole_layer = True
    suitable_for_hidden = False

    def compute(self, x):
        raise UnsupportedOperationError("Softmax requires whole-layer computation")

    def derivative(self, x, a):
        return np.ones_like(np.asarray(x, dtype=np.float64))

    def compute_layer(self, sums: Array) -> tuple[Array, Array]:
        sums = np.asarray(sums, dtype=np.float64)
        shifted = sums - np.max(sums, axis=-1, keepdims=True)
        exp = np.exp(shifted)
        activations = exp / np.sum(exp, axis=-1, keepdims=True)
        return activations, activations * (1.0 - activations)


class Softplus(Activation):
    name = "softplus"
    output_range = Interval(0.0, _INF, False, False)

    def compute(self, x):
        return np.logaddexp(0.0, x)

    def derivative(self, x, a):
        return Sigmoid().compute(x)


class TanH(_XavierInit, Activation):
    name = "tanh"
    output_range = Interval(-1.0, 1.0, False, False)

    def compute(self, x):
        return np.tanh(x)

    def derivative(self, x, a):
        a = np.asarray(a)
        return 1.0 - a * a


class ActivationRegistry:
    """Central registry mapping activation names to implementations."""

    def __init__(self) -> None:
        self._registry: Dict[str, Type[Activation]] = {}

    def register(self, cls: Type[Activation]) -> Type[Activation]:
        self._registry[cls.name] = cls
        return cls

    def get(self, name: str) -> Activation:
        key = str(name).lower()
        if key not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown activation {name!r}. Available activations: {available}")
        return self._registry[key]()

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def hidden(self, name: str) -> Activation:
        """Return ``name`` after checking it may be placed on a hidden layer."""

        activation = self.get(name)
        if not activation.suitable_for_hidden:
            raise ConfigurationError(
                f"Activation {activation.name!r} cannot be used on a hidden layer"
            )
        return activation


REGISTRY = ActivationRegistry()

for _cls in (
    BentIdentity,
    ELU,
    ElliotSig,
    GELU,
    HardLim,
    LeakyReLU,
    Linear,
    RadBas,
    ReLU,
    SELU,
    Sigmoid,
    Sine,
    Softmax,
    Softplus,
    TanH,
):
    REGISTRY.register(_cls)


def get_activation(name: str) -> Activation:
    return REGISTRY.get(name)


__all__ = [
    "Activation",
    "ActivationRegistry",
    "BentIdentity",
    "DROPOUT_BERNOULLI",
    "DROPOUT_GAUSSIAN",
    "DROPOUT_MODES",
    "DROPOUT_NONE",
    "ELU",
    "ElliotSig",
    "GELU",
    "HardLim",
    "LeakyReLU",
    "Linear",
    "REGISTRY",
    "RadBas",
    "ReLU",
    "SELU",
    "Sigmoid",
    "Sine",
    "Softmax",
    "Softplus",
    "TanH",
    "get_activation",
]
