"""Dispatch a model configuration to the matching model builder."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..data.dataset import SampleDataset
from ..training.config import (
    CompositeModelConfig,
    CrossValModelConfig,
    ModelConfig,
    NetworkModelConfig,
    StackingModelConfig,
)
from .base import ModelBase
from .composite import CompositeModel
from .crossval import CrossValModel
from .network import NetworkModel
from .stacking import StackingModel


def build_model(
    config: ModelConfig,
    name: str,
    task_type: str,
    output_feature_names: Sequence[str],
    training: SampleDataset,
    *,
    validation: SampleDataset | None = None,
    seed: int = 0,
    progress: Iterable[object] | None = None,
    max_workers: int | None = 1,
) -> ModelBase:
    """Build any configured model type on ``training``.

    ``validation`` is only consulted by a plain network model; the ensembles
    carve their validation folds out of ``training``.
    """

    if isinstance(config, NetworkModelConfig):
        return NetworkModel.build(
            config,
            name,
            task_type,
            output_feature_names,
            training,
            validation,
            seed=seed,
            progress=progress,
            max_workers=max_workers,
        )
    if isinstance(config, CrossValModelConfig):
        builder = CrossValModel.build
    elif isinstance(config, StackingModelConfig):
        builder = StackingModel.build
    elif isinstance(config, CompositeModelConfig):
        builder = CompositeModel.build
    else:
        raise TypeError(f"Unsupported model configuration: {type(config).__name__}")
    return builder(
        config,  # type: ignore[arg-type]
        name,
        task_type,
        output_feature_names,
        training,
        seed=seed,
        progress=progress,
        max_workers=max_workers,
    )


__all__ = ["build_model"]
