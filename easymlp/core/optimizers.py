"""Optimizer family operating on flat weight and gradient arrays.

Every optimizer is bound to one network's weight arena. ``update`` mutates the
weight array in place; entries whose gradient switch is off are left untouched
together with their optimizer state.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Type

import numpy as np

from .errors import ConfigurationError
from .types import EPSILON, Array


def _check_lr(value: float, label: str = "lr") -> None:
    if not value > 0.0:
        raise ConfigurationError(f"{label} must be > 0, got {value}")


def _check_open_unit(value: float, label: str) -> None:
    if not 0.0 < value < 1.0:
        raise ConfigurationError(f"{label} must be in (0, 1), got {value}")


def _check_momentum(value: float) -> None:
    if not 0.0 <= value < 1.0:
        raise ConfigurationError(f"momentum must be in [0, 1), got {value}")


# ---------------------------------------------------------------------------
# Configurations


@dataclass(frozen=True)
class SGDConfig:
    name: ClassVar[str] = "sgd"
    lr: float = 1e-4
    momentum: float = 0.9
    dampening: float = 0.0
    nesterov: bool = False

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_momentum(self.momentum)
        if self.dampening < 0.0:
            raise ConfigurationError("dampening must be >= 0")
        if self.nesterov and (self.momentum <= 0.0 or self.dampening != 0.0):
            raise ConfigurationError("nesterov requires momentum > 0 and zero dampening")


@dataclass(frozen=True)
class AdagradConfig:
    name: ClassVar[str] = "adagrad"
    lr: float = 0.01

    def __post_init__(self) -> None:
        _check_lr(self.lr)


@dataclass(frozen=True)
class AdadeltaConfig:
    name: ClassVar[str] = "adadelta"
    gamma: float = 0.95

    def __post_init__(self) -> None:
        _check_open_unit(self.gamma, "gamma")


@dataclass(frozen=True)
class RMSPropConfig:
    name: ClassVar[str] = "rmsprop"
    lr: float = 0.001
    alpha: float = 0.99
    momentum: float = 0.0
    centered: bool = False

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_open_unit(self.alpha, "alpha")
        _check_momentum(self.momentum)


@dataclass(frozen=True)
class AdamConfig:
    name: ClassVar[str] = "adam"
    lr: float = 0.001
    beta1: float = 0.9
    beta2: float = 0.999
    amsgrad: bool = False

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_open_unit(self.beta1, "beta1")
        _check_open_unit(self.beta2, "beta2")


@dataclass(frozen=True)
class AdamaxConfig:
    name: ClassVar[str] = "adamax"
    lr: float = 0.002
    beta1: float = 0.9
    beta2: float = 0.999

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_open_unit(self.beta1, "beta1")
        _check_open_unit(self.beta2, "beta2")


@dataclass(frozen=True)
class AdabeliefConfig:
    name: ClassVar[str] = "adabelief"
    lr: float = 0.001
    beta1: float = 0.9
    beta2: float = 0.999

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_open_unit(self.beta1, "beta1")
        _check_open_unit(self.beta2, "beta2")


@dataclass(frozen=True)
class PadamConfig:
    name: ClassVar[str] = "padam"
    lr: float = 0.01
    beta1: float = 0.9
    beta2: float = 0.999
    p: float = 0.125

    def __post_init__(self) -> None:
        _check_lr(self.lr)
        _check_open_unit(self.beta1, "beta1")
        _check_open_unit(self.beta2, "beta2")
        if not 0.0 <= self.p <= 0.5:
            raise ConfigurationError(f"p must be in [0, 0.5], got {self.p}")


@dataclass(frozen=True)
class RPropConfig:
    name: ClassVar[str] = "rprop"
    zero_tolerance: ClassVar[float] = 1e-16
    ini_lr: float = 0.0025
    min_lr: float = 1e-6
    max_lr: float = 0.0075
    pos_eta: float = 1.2
    neg_eta: float = 0.5

    def __post_init__(self) -> None:
        _check_lr(self.min_lr, "min_lr")
        if not self.min_lr <= self.ini_lr <= self.max_lr:
            raise ConfigurationError("RProp learning rates must satisfy min_lr <= ini_lr <= max_lr")
        if not self.pos_eta > 1.0:
            raise ConfigurationError("pos_eta must be > 1")
        _check_open_unit(self.neg_eta, "neg_eta")


OptimizerConfig = Any


# ---------------------------------------------------------------------------
# Optimizers


class Optimizer:
    """Common contract: ``reset``, ``new_epoch`` and ``update``."""

    config_cls: ClassVar[type]

    def __init__(self, num_weights: int, config: OptimizerConfig | None = None) -> None:
        if num_weights <= 0:
            raise ConfigurationError("Optimizer requires at least one weight")
        self.num_weights = int(num_weights)
        self.config = config if config is not None else self.config_cls()
        if not isinstance(self.config, self.config_cls):
            raise ConfigurationError(
                f"{type(self).__name__} expects {self.config_cls.__name__}, "
                f"got {type(self.config).__name__}"
            )
        self.reset()

    def _zeros(self) -> Array:
        return np.zeros(self.num_weights, dtype=np.float64)

    def reset(self) -> None:
        raise NotImplementedError

    def new_epoch(self, epoch: int, max_epoch: int) -> None:
        """Per-epoch hook; scheduling lives in the permeability multiplier."""

    def update(
        self,
        permeability: float,
        cost: float,
        switches: Array,
        grads: Array,
        weights: Array,
    ) -> None:
        raise NotImplementedError

    def state_dict(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {}
        for key, value in vars(self).items():
            if key in {"config", "num_weights"}:
                continue
            state[key] = value.copy() if isinstance(value, np.ndarray) else value
        return state

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"


class SGD(Optimizer):
    config_cls = SGDConfig

    def reset(self) -> None:
        self._step = 0
        self._m = self._zeros()

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        self._step += 1
        lr = permeability * cfg.lr
        if cfg.momentum > 0.0:
            if self._step == 1:
                m = grads.copy()
            else:
                m = cfg.momentum * self._m + (1.0 - cfg.dampening) * grads
            self._m = np.where(switches, m, self._m)
            step = grads + cfg.momentum * self._m if cfg.nesterov else self._m
        else:
            step = grads
        weights -= np.where(switches, lr * step, 0.0)


class Adagrad(Optimizer):
    config_cls = AdagradConfig

    def reset(self) -> None:
        self._s = self._zeros()

    def update(self, permeability, cost, switches, grads, weights):
        lr = permeability * self.config.lr
        self._s = np.where(switches, self._s + grads * grads, self._s)
        weights -= np.where(switches, lr * grads / (np.sqrt(self._s) + EPSILON), 0.0)


class Adadelta(Optimizer):
    config_cls = AdadeltaConfig

    def reset(self) -> None:
        init = math.sqrt(EPSILON)
        self._g = np.full(self.num_weights, init, dtype=np.float64)
        self._d = np.full(self.num_weights, init, dtype=np.float64)

    def update(self, permeability, cost, switches, grads, weights):
        gamma = self.config.gamma
        g = gamma * self._g + (1.0 - gamma) * grads * grads
        delta = np.sqrt(self._d + EPSILON) / np.sqrt(g + EPSILON) * grads
        d = gamma * self._d + (1.0 - gamma) * delta * delta
        self._g = np.where(switches, g, self._g)
        self._d = np.where(switches, d, self._d)
        weights -= np.where(switches, permeability * delta, 0.0)


class RMSProp(Optimizer):
    config_cls = RMSPropConfig

    def reset(self) -> None:
        self._v = self._zeros()
        self._g_avg = self._zeros()
        self._buf = self._zeros()

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        lr = permeability * cfg.lr
        v = cfg.alpha * self._v + (1.0 - cfg.alpha) * grads * grads
        self._v = np.where(switches, v, self._v)
        second = self._v
        if cfg.centered:
            g_avg = cfg.alpha * self._g_avg + (1.0 - cfg.alpha) * grads
            self._g_avg = np.where(switches, g_avg, self._g_avg)
            second = np.maximum(self._v - self._g_avg * self._g_avg, 0.0)
        scaled = grads / (np.sqrt(second) + EPSILON)
        if cfg.momentum > 0.0:
            buf = cfg.momentum * self._buf + scaled
            self._buf = np.where(switches, buf, self._buf)
            scaled = self._buf
        weights -= np.where(switches, lr * scaled, 0.0)


class Adam(Optimizer):
    config_cls = AdamConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._v = self._zeros()
        self._max_v = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        corr1 = 1.0 - self._powered_beta1
        corr2 = 1.0 - self._powered_beta2
        lr = permeability * cfg.lr * math.sqrt(corr2) / corr1
        m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        v = cfg.beta2 * self._v + (1.0 - cfg.beta2) * grads * grads
        self._m = np.where(switches, m, self._m)
        self._v = np.where(switches, v, self._v)
        self._max_v = np.maximum(self._max_v, self._v)
        denominator = np.sqrt(self._max_v if cfg.amsgrad else self._v) + EPSILON
        weights -= np.where(switches, lr * self._m / denominator, 0.0)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class Adamax(Optimizer):
    config_cls = AdamaxConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._u = self._zeros()
        self._powered_beta1 = self.config.beta1

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        lr = permeability * cfg.lr / (1.0 - self._powered_beta1)
        m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        u = np.maximum(cfg.beta2 * self._u, np.abs(grads))
        self._m = np.where(switches, m, self._m)
        self._u = np.where(switches, u, self._u)
        weights -= np.where(switches, lr * self._m / (self._u + EPSILON), 0.0)
        self._powered_beta1 *= cfg.beta1


class Adabelief(Optimizer):
    config_cls = AdabeliefConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._s = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        corr1 = 1.0 - self._powered_beta1
        corr2 = 1.0 - self._powered_beta2
        lr = permeability * cfg.lr * math.sqrt(corr2) / corr1
        m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        s = cfg.beta2 * self._s + (1.0 - cfg.beta2) * np.square(grads - m) + EPSILON
        self._m = np.where(switches, m, self._m)
        self._s = np.where(switches, s, self._s)
        weights -= np.where(switches, lr * self._m / (np.sqrt(self._s) + EPSILON), 0.0)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class Padam(Optimizer):
    """Partially adaptive Adam: the AMSGrad denominator is raised to ``2p``."""

    config_cls = PadamConfig

    def reset(self) -> None:
        self._m = self._zeros()
        self._v = self._zeros()
        self._max_v = self._zeros()
        self._powered_beta1 = self.config.beta1
        self._powered_beta2 = self.config.beta2

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        corr1 = 1.0 - self._powered_beta1
        corr2 = 1.0 - self._powered_beta2
        lr = permeability * cfg.lr * math.sqrt(corr2) / corr1
        m = cfg.beta1 * self._m + (1.0 - cfg.beta1) * grads
        v = cfg.beta2 * self._v + (1.0 - cfg.beta2) * grads * grads
        self._m = np.where(switches, m, self._m)
        self._v = np.where(switches, v, self._v)
        self._max_v = np.maximum(self._max_v, self._v)
        denominator = np.power(self._max_v + EPSILON, cfg.p)
        weights -= np.where(switches, lr * self._m / denominator, 0.0)
        self._powered_beta1 *= cfg.beta1
        self._powered_beta2 *= cfg.beta2


class RProp(Optimizer):
    """iRPROP+ with weight backtracking on sign flip plus cost increase.

    Intended for full-batch training; stochastic gradients break the sign
    persistence it relies on.
    """

    config_cls = RPropConfig

    def reset(self) -> None:
        self._prev_grads = self._zeros()
        self._w_lrs = np.full(self.num_weights, self.config.ini_lr, dtype=np.float64)
        self._w_changes = self._zeros()
        self._prev_cost = math.inf

    def _sign(self, values: Array) -> Array:
        tol = RPropConfig.zero_tolerance
        return np.where(np.abs(values) <= tol, 0.0, np.sign(values))

    def update(self, permeability, cost, switches, grads, weights):
        cfg = self.config
        product = self._sign(grads * self._prev_grads)
        same = (product > 0.0) & switches
        flip = (product < 0.0) & switches
        fresh = (product == 0.0) & switches

        self._w_lrs[same] = np.minimum(self._w_lrs[same] * cfg.pos_eta, cfg.max_lr)
        self._w_lrs[flip] = np.maximum(self._w_lrs[flip] * cfg.neg_eta, cfg.min_lr)

        stepping = same | fresh
        self._w_changes[stepping] = -permeability * (
            self._sign(grads[stepping]) * self._w_lrs[stepping]
        )
        weights[stepping] += self._w_changes[stepping]
        self._prev_grads[stepping] = grads[stepping]

        self._prev_grads[flip] = 0.0
        if cost > self._prev_cost:
            self._w_changes[flip] *= -1.0
            weights[flip] += self._w_changes[flip]
        self._prev_cost = float(cost)


_OPTIMIZERS: Dict[str, Type[Optimizer]] = {
    cls.config_cls.name: cls
    for cls in (SGD, Adagrad, Adadelta, RMSProp, Adam, Adamax, Adabelief, Padam, RProp)
}


def available_optimizers() -> list[str]:
    return sorted(_OPTIMIZERS)


def create_optimizer(num_weights: int, config: OptimizerConfig) -> Optimizer:
    """Instantiate the optimizer matching ``config``'s type."""

    for cls in _OPTIMIZERS.values():
        if isinstance(config, cls.config_cls):
            return cls(num_weights, config)
    raise ConfigurationError(f"Unsupported optimizer config: {type(config).__name__}")


def optimizer_config_from_dict(data: Mapping[str, Any] | str | None) -> OptimizerConfig:
    """Build an optimizer config from ``{"name": ..., **params}`` or a bare name."""

    if data is None:
        return RPropConfig()
    if isinstance(data, str):
        data = {"name": data}
    params = dict(data)
    name = str(params.pop("name", "rprop")).lower()
    if name not in _OPTIMIZERS:
        available = ", ".join(sorted(_OPTIMIZERS))
        raise KeyError(f"Unknown optimizer {name!r}. Available optimizers: {available}")
    config_cls = _OPTIMIZERS[name].config_cls
    known = {f.name for f in fields(config_cls)}
    unknown = set(params) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown {name} options: {', '.join(sorted(unknown))}"
        )
    return config_cls(**params)


def optimizer_config_to_dict(config: OptimizerConfig) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"name": config.name}
    payload.update(asdict(config))
    return payload


__all__ = [
    "Adabelief",
    "AdabeliefConfig",
    "Adadelta",
    "AdadeltaConfig",
    "Adagrad",
    "AdagradConfig",
    "Adam",
    "AdamConfig",
    "Adamax",
    "AdamaxConfig",
    "Optimizer",
    "Padam",
    "PadamConfig",
    "RMSProp",
    "RMSPropConfig",
    "RProp",
    "RPropConfig",
    "SGD",
    "SGDConfig",
    "available_optimizers",
    "create_optimizer",
    "optimizer_config_from_dict",
    "optimizer_config_to_dict",
]
