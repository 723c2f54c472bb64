"""Dataset registry and the built-in synthetic datasets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, MutableMapping

import numpy as np

from ..core.types import BINARY, CATEGORICAL, REGRESSION, TASK_TYPES
from .dataset import SampleDataset
from .utils import split_dataset


@dataclass(frozen=True)
class DatasetSpec:
    """A ready-to-train dataset with its task description.

    Attributes
    ----------
    name:
        Registry identifier.
    task_type:
        One of ``{"regression", "binary", "categorical"}``.
    training:
        Samples used to build models.
    testing:
        Optional held-out samples used for the final evaluation.
    output_feature_names:
        One name per output feature.
    provenance:
        Free-form metadata recorded in the run manifest.
    """

    name: str
    task_type: str
    training: SampleDataset
    testing: SampleDataset | None
    output_feature_names: List[str]
    provenance: Dict[str, Any] = field(default_factory=dict)


DatasetFactory = Callable[..., DatasetSpec]


_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory.

    ``register_dataset`` can be used both as a decorator::

        @register_dataset("xor")
        def make_xor(**kwargs):
            ...

    or directly::

        register_dataset("xor", make_xor)
    """

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    if name is None:
        raise TypeError("register_dataset requires a name when used without a decorator")
    return _decorator


def get_dataset(dataset: str, /, **options: Any) -> DatasetSpec:
    """Return the :class:`DatasetSpec` produced by the ``dataset`` factory."""

    if dataset not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise KeyError(f"Unknown dataset {dataset!r}. Available datasets: {available}")
    spec = _REGISTRY[dataset](**options)
    _validate_spec(spec)
    return spec


def available_datasets() -> Iterable[str]:
    """Return the sorted list of available dataset identifiers."""

    return sorted(_REGISTRY)


def _validate_spec(spec: DatasetSpec) -> None:
    if spec.task_type not in TASK_TYPES:
        raise ValueError(f"Invalid task type: {spec.task_type}")
    spec.training.check_uniform()
    if len(spec.output_feature_names) != spec.training.output_length:
        raise ValueError("output_feature_names must name every output feature")
    if spec.testing is not None:
        spec.testing.check_uniform()
        if spec.testing.input_length != spec.training.input_length:
            raise ValueError("Testing inputs differ in length from training inputs")


@register_dataset("xor")
def make_xor(*, repeat: int = 1, test_split: float = 0.0, seed: int = 0) -> DatasetSpec:
    """Boolean XOR: four samples, optionally repeated."""

    base_x = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float64)
    base_y = np.array([[0], [1], [1], [0]], dtype=np.float64)
    inputs = np.tile(base_x, (max(1, int(repeat)), 1))
    outputs = np.tile(base_y, (max(1, int(repeat)), 1))
    training, testing = split_dataset(inputs, outputs, test_split=test_split, seed=seed)
    return DatasetSpec(
        name="xor",
        task_type=BINARY,
        training=training,
        testing=testing,
        output_feature_names=["xor"],
        provenance={"type": "synthetic", "name": "xor", "repeat": int(repeat), "seed": seed},
    )


@register_dataset("sine")
def make_sine(
    *,
    n_points: int = 200,
    freq: float = 1.0,
    noise: float = 0.0,
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Noisy ``sin(2*pi*freq*x)`` regression on ``x`` in ``[0, 1]``."""

    rng = np.random.default_rng(seed)
    x = np.linspace(0.0, 1.0, int(n_points)).reshape(-1, 1)
    y = np.sin(2.0 * np.pi * freq * x)
    if noise > 0:
        y = y + rng.normal(0.0, noise, size=y.shape)
    training, testing = split_dataset(x, y, test_split=test_split, seed=seed)
    return DatasetSpec(
        name="sine",
        task_type=REGRESSION,
        training=training,
        testing=testing,
        output_feature_names=["sine"],
        provenance={
            "type": "synthetic",
            "name": "sine",
            "n_points": int(n_points),
            "freq": freq,
            "noise": noise,
            "seed": seed,
        },
    )


@register_dataset("blobs")
def make_blobs(
    *,
    n_per_class: int = 40,
    n_classes: int = 3,
    spread: float = 0.5,
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Gaussian blobs around points on the unit circle, one-hot outputs."""

    rng = np.random.default_rng(seed)
    angles = 2.0 * np.pi * np.arange(n_classes) / n_classes
    centers = 3.0 * np.stack([np.cos(angles), np.sin(angles)], axis=1)
    inputs = []
    outputs = []
    eye = np.eye(n_classes)
    for cls in range(n_classes):
        inputs.append(centers[cls] + rng.normal(0.0, spread, size=(int(n_per_class), 2)))
        outputs.append(np.repeat(eye[cls : cls + 1], int(n_per_class), axis=0))
    training, testing = split_dataset(
        np.vstack(inputs), np.vstack(outputs), test_split=test_split, seed=seed
    )
    return DatasetSpec(
        name="blobs",
        task_type=CATEGORICAL,
        training=training,
        testing=testing,
        output_feature_names=[f"class_{i}" for i in range(n_classes)],
        provenance={
            "type": "synthetic",
            "name": "blobs",
            "n_per_class": int(n_per_class),
            "n_classes": int(n_classes),
            "spread": spread,
            "seed": seed,
        },
    )


__all__ = [
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "make_blobs",
    "make_sine",
    "make_xor",
    "register_dataset",
]
