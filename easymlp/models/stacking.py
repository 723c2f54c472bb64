"""Stacked generalisation over a stack of networks and a meta-learner."""

from __future__ import annotations

from typing import Iterable, List, Sequence

import numpy as np

from ..core.errors import ConfigurationError
from ..core.parallel import run_ordered
from ..core.types import Array
from ..data.dataset import Sample, SampleDataset
from ..training.config import StackingModelConfig
from .base import ModelBase, fold_label, member_seeds
from .crossval import merge_other_folds
from .network import NetworkModel


class StackingModel(ModelBase):
    """Strong stack networks feeding a meta-learner model."""

    context_id = "Stacking"

    def __init__(
        self,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        config: StackingModelConfig | None = None,
        route_input: bool = False,
    ) -> None:
        super().__init__(name, task_type, output_feature_names, config)
        self.route_input = route_input
        self.stack: List[NetworkModel] = []
        self.meta_learner: ModelBase | None = None

    def add_stack_member(self, member: NetworkModel) -> None:
        self._check_member(member)
        self.stack.append(member)

    def finalize(self, meta_learner: ModelBase) -> None:
        self._check_member(meta_learner)
        if not self.stack:
            raise ConfigurationError("Stack is empty")
        self.meta_learner = meta_learner
        self._finalize(meta_learner.confidence_metrics)  # type: ignore[arg-type]

    def meta_inputs(self, inputs: Array, stack_outputs: Array) -> Array:
        if self.route_input:
            return np.hstack([inputs, stack_outputs])
        return stack_outputs

    def compute_batch(self, inputs: Array) -> Array:
        if self.meta_learner is None:
            raise ConfigurationError("Model is not built yet")
        x = np.asarray(inputs, dtype=np.float64)
        stack_outputs = np.hstack([member.compute_batch(x) for member in self.stack])
        return self.meta_learner.compute_batch(self.meta_inputs(x, stack_outputs))

    def summary(self) -> dict:
        payload = super().summary()
        payload["stack"] = [m.summary() for m in self.stack]
        if self.meta_learner is not None:
            payload["meta_learner"] = self.meta_learner.summary()
        return payload

    @classmethod
    def build(
        cls,
        config: StackingModelConfig,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        training: SampleDataset,
        *,
        seed: int = 0,
        progress: Iterable[object] | None = None,
        max_workers: int | None = 1,
    ) -> "StackingModel":
        """Train weak networks per hold-out fold, strong networks on all data,
        then the meta-learner on their blended outputs."""

        from .factory import build_model

        if not isinstance(config, StackingModelConfig):
            raise ConfigurationError(
                f"Expected StackingModelConfig, got {type(config).__name__}"
            )
        model = cls(name, task_type, output_feature_names, config, config.route_input)
        local = training.shallow_clone()
        local.shuffle(np.random.default_rng(seed))
        folds = local.folderize(config.fold_data_ratio, task_type)
        n_stack = len(config.stack)
        seeds = member_seeds(seed, (len(folds) + 1) * n_stack + 1)
        callbacks = list(progress or [])

        def _train_weak(job: tuple) -> Array:
            fold_idx, net_idx = job
            weak = NetworkModel.build(
                config.stack[net_idx],
                f"{model.name}.{fold_label('F', fold_idx, len(folds))}-"
                f"{fold_label('Weak', net_idx, n_stack)}-{NetworkModel.context_id}",
                task_type,
                output_feature_names,
                merge_other_folds(folds, fold_idx),
                folds[fold_idx],
                engage_validation=False,
                seed=seeds[fold_idx * n_stack + net_idx],
                progress=callbacks,
            )
            return weak.compute_batch(folds[fold_idx].input_matrix())

        def _train_strong(net_idx: int) -> NetworkModel:
            return NetworkModel.build(
                config.stack[net_idx],
                f"{model.name}.{fold_label('Strong', net_idx, n_stack)}-{NetworkModel.context_id}",
                task_type,
                output_feature_names,
                local,
                engage_validation=False,
                seed=seeds[len(folds) * n_stack + net_idx],
                progress=callbacks,
            )

        jobs = [(f, s) for f in range(len(folds)) for s in range(n_stack)]
        hold_out = run_ordered(jobs, _train_weak, max_workers=max_workers)
        for member in run_ordered(range(n_stack), _train_strong, max_workers=max_workers):
            model.add_stack_member(member)

        meta_data = SampleDataset()
        for fold_idx, fold in enumerate(folds):
            inputs = fold.input_matrix()
            blended = [
                # Weak hold-out and strong outputs are averaged 1:1.
                (hold_out[fold_idx * n_stack + net_idx] + model.stack[net_idx].compute_batch(inputs))
                / 2.0
                for net_idx in range(n_stack)
            ]
            meta_inputs = model.meta_inputs(inputs, np.hstack(blended))
            for sample, meta_vector in zip(fold, meta_inputs):
                meta_data.add_sample(Sample(sample.id, meta_vector, sample.output))
        meta_data.sort_by_id()

        meta_type = getattr(config.meta_learner, "type", "model")
        meta = build_model(
            config.meta_learner,
            f"{model.name}.Meta-Learner-{meta_type}",
            task_type,
            output_feature_names,
            meta_data,
            seed=seeds[-1],
            progress=callbacks,
            max_workers=max_workers,
        )
        model.finalize(meta)
        return model


__all__ = ["StackingModel"]
