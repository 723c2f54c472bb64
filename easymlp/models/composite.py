"""Composite ensemble of independently built sub-models."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from ..core.errors import ConfigurationError
from ..core.parallel import run_ordered
from ..core.types import Array
from ..data.dataset import SampleDataset
from ..training.config import CompositeModelConfig
from ..training.metrics import ModelConfidenceMetrics
from .base import ModelBase, fold_label, member_seeds


class CompositeModel(ModelBase):
    """Sub-models of any kind, each trained on all data and aggregated."""

    context_id = "Composite"

    def __init__(
        self,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        config: CompositeModelConfig | None = None,
    ) -> None:
        super().__init__(name, task_type, output_feature_names, config)
        self.members: List[ModelBase] = []
        self._weights: Array | None = None

    def add_member(self, member: ModelBase) -> None:
        self._check_member(member)
        self.members.append(member)

    def finalize(self) -> None:
        if not self.members:
            raise ConfigurationError("At least one sub-model is required")
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
        config: CompositeModelConfig,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        training: SampleDataset,
        *,
        seed: int = 0,
        progress: Iterable[object] | None = None,
        max_workers: int | None = 1,
    ) -> "CompositeModel":
        from .factory import build_model

        if not isinstance(config, CompositeModelConfig):
            raise ConfigurationError(
                f"Expected CompositeModelConfig, got {type(config).__name__}"
            )
        model = cls(name, task_type, output_feature_names, config)
        count = len(config.models)
        seeds = member_seeds(seed, count)
        callbacks = list(progress or [])

        def _train(idx: int) -> ModelBase:
            sub_config = config.models[idx]
            return build_model(
                sub_config,
                f"{model.name}.{fold_label('M', idx, count)}-{getattr(sub_config, 'type', 'model')}",
                task_type,
                output_feature_names,
                training,
                seed=seeds[idx],
                progress=callbacks,
            )

        for member in run_ordered(range(count), _train, max_workers=max_workers):
            model.add_member(member)
        model.finalize()
        return model


__all__ = ["CompositeModel"]
