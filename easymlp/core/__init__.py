"""Core numerical primitives for EasyMLP."""

from . import activations, errors, optimizers, parallel, regularization, stats, throttle, types

__all__ = [
    "activations",
    "errors",
    "optimizers",
    "parallel",
    "regularization",
    "stats",
    "throttle",
    "types",
]
