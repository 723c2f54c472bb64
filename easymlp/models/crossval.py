"""Cross-validated ensemble: one network per held-out fold."""

from __future__ import annotations

from typing import Iterable, List, Sequence

import numpy as np

from ..core.errors import ConfigurationError
from ..core.parallel import run_ordered
from ..core.types import Array
from ..data.dataset import SampleDataset
from ..training.config import CrossValModelConfig
from ..training.metrics import ModelConfidenceMetrics
from .base import ModelBase, fold_label, member_seeds
from .network import NetworkModel


def merge_other_folds(folds: Sequence[SampleDataset], skip: int) -> SampleDataset:
    merged = SampleDataset()
    for idx, fold in enumerate(folds):
        if idx != skip:
            merged.add(fold)
    return merged


class CrossValModel(ModelBase):
    """Networks trained on every fold split, weighted by feature confidence."""

    context_id = "CVM"

    def __init__(
        self,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        config: CrossValModelConfig | None = None,
    ) -> None:
        super().__init__(name, task_type, output_feature_names, config)
        self.members: List[NetworkModel] = []
        self._weights: Array | None = None

    def add_member(self, member: NetworkModel) -> None:
        self._check_member(member)
        self.members.append(member)

    def finalize(self) -> None:
        if not self.members:
            raise ConfigurationError("At least one member network is required")
        self._weights = self.member_weights(self.members)
        self._finalize(
            ModelConfidenceMetrics.aggregate(
                self.task_type, [m.confidence_metrics for m in self.members]  # type: ignore[misc]
            )
        )

    def compute_batch(self, inputs: Array) -> Array:
        return self.aggregate([m.compute_batch(inputs) for m in self.members], self._weights)

    def summary(self) -> dict:
        payload = super().summary()
        payload["members"] = [m.summary() for m in self.members]
        return payload

    @classmethod
    def build(
        cls,
        config: CrossValModelConfig,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        training: SampleDataset,
        *,
        seed: int = 0,
        progress: Iterable[object] | None = None,
        max_workers: int | None = 1,
    ) -> "CrossValModel":
        if not isinstance(config, CrossValModelConfig):
            raise ConfigurationError(
                f"Expected CrossValModelConfig, got {type(config).__name__}"
            )
        model = cls(name, task_type, output_feature_names, config)
        local = training.shallow_clone()
        local.shuffle(np.random.default_rng(seed))
        folds = local.folderize(config.fold_data_ratio, task_type)
        seeds = member_seeds(seed, len(folds))
        callbacks = list(progress or [])

        def _train(idx: int) -> NetworkModel:
            return NetworkModel.build(
                config.network,
                f"{model.name}.{fold_label('F', idx, len(folds))}-{NetworkModel.context_id}",
                task_type,
                output_feature_names,
                merge_other_folds(folds, idx),
                folds[idx],
                seed=seeds[idx],
                progress=callbacks,
            )

        for member in run_ordered(range(len(folds)), _train, max_workers=max_workers):
            model.add_member(member)
        model.finalize()
        return model


__all__ = ["CrossValModel", "merge_other_folds"]
