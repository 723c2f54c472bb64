"""Exception taxonomy shared by every EasyMLP component."""

from __future__ import annotations


class EasyMLPError(Exception):
    """Root of all library errors."""


class ConfigurationError(EasyMLPError, ValueError):
    """Invalid hyperparameter, topology or placement detected at construction."""


class DataError(EasyMLPError, ValueError):
    """Malformed dataset: non-uniform vectors, non-finite values, duplicate IDs."""


class NumericInstabilityError(EasyMLPError, ArithmeticError):
    """A filter or optimizer step produced a non-finite or exploding result."""


class UnsupportedOperationError(EasyMLPError, NotImplementedError):
    """Programming-contract violation such as scalar softmax computation."""


__all__ = [
    "ConfigurationError",
    "DataError",
    "EasyMLPError",
    "NumericInstabilityError",
    "UnsupportedOperationError",
]
