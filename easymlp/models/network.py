"""Single trained network together with its feature filters."""

from __future__ import annotations

from typing import Iterable, List, Sequence

import numpy as np

from ..core.errors import ConfigurationError, DataError
from ..core.types import REGRESSION, Array, ProgressInfo
from ..data.dataset import SampleDataset, apply_filters, reverse_filters
from ..data.filters import FeatureFilter
from ..training.config import NetworkModelConfig
from ..training.engine import MLPEngine
from ..training.metrics import ModelConfidenceMetrics, ModelErrStat
from ..training.trainer import Trainer
from .base import ModelBase, emit_progress

RMSE_THRESHOLD = 1e-6


class NetworkModel(ModelBase):
    """Snapshot of an :class:`MLPEngine` and the filters it was trained with."""

    context_id = "MLP"

    def __init__(
        self,
        name: str,
        config: NetworkModelConfig,
        engine: MLPEngine,
        input_filters: Sequence[FeatureFilter],
        output_filters: Sequence[FeatureFilter],
        training_err_stat: ModelErrStat,
        validation: SampleDataset | None = None,
    ) -> None:
        super().__init__(name, engine.task_type, engine.output_feature_names, config)
        if len(output_filters) != engine.output_count:
            raise ConfigurationError("Number of output filters differs from network outputs")
        self.engine = engine.deep_clone()
        self.input_filters: List[FeatureFilter] = [f.deep_clone() for f in input_filters]
        self.output_filters: List[FeatureFilter] = [f.deep_clone() for f in output_filters]
        self.training_err_stat = training_err_stat.deep_clone()
        self.validation_err_stat: ModelErrStat | None = None
        if validation is not None:
            self.validation_err_stat = self.test(validation).err_stat
        self._finalize(
            ModelConfidenceMetrics.from_stats(self.training_err_stat, self.validation_err_stat)
        )

    def compute_batch(self, inputs: Array) -> Array:
        x = np.asarray(inputs, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != len(self.input_filters):
            raise DataError(
                f"Expected input matrix with {len(self.input_filters)} columns, got shape {x.shape}"
            )
        outputs = self.engine.forward(apply_filters(self.input_filters, x))
        return reverse_filters(self.output_filters, outputs)

    def is_better(self, other: "NetworkModel", training_only: bool = False) -> bool:
        """Whether this model ranks above ``other``."""

        if training_only:
            return self.training_err_stat.is_better(other.training_err_stat)
        return self.confidence_metrics.is_better(other.confidence_metrics)  # type: ignore[union-attr]

    def summary(self) -> dict:
        payload = super().summary()
        payload["training"] = self.training_err_stat.summary()
        if self.validation_err_stat is not None:
            payload["validation"] = self.validation_err_stat.summary()
        payload["topology"] = dict(self.engine.topology())
        return payload

    @classmethod
    def build(
        cls,
        config: NetworkModelConfig,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        training: SampleDataset,
        validation: SampleDataset | None = None,
        *,
        engage_validation: bool | None = None,
        seed: int = 0,
        progress: Iterable[object] | None = None,
        max_workers: int | None = 1,
    ) -> "NetworkModel":
        """Train a network and return the best snapshot seen.

        With ``engage_validation`` the snapshots are ranked by confidence
        metrics blending training and ``validation`` results; otherwise by
        training error statistics alone. ``validation`` is engaged whenever it
        is given unless ``engage_validation`` is ``False``. ``max_workers``
        bounds the threads fitting the per-feature filters.
        """

        if not isinstance(config, NetworkModelConfig):
            raise ConfigurationError(
                f"Expected NetworkModelConfig, got {type(config).__name__}"
            )
        if engage_validation is None:
            engage_validation = validation is not None
        if engage_validation and validation is None:
            raise ConfigurationError("Cannot engage validation data: validation data is missing")
        if training.count == 0:
            raise DataError("Training dataset is empty")
        name = name or cls.context_id
        callbacks = list(progress or [])
        training_only = not engage_validation

        engine = MLPEngine(task_type, training.input_length, output_feature_names, config.hidden_layers)
        trainer = Trainer(
            config, engine, training, np.random.default_rng(seed), max_workers=max_workers
        )

        best: NetworkModel | None = None
        best_attempt = best_epoch = 0
        last_improvement: NetworkModel | None = None
        last_improvement_epoch = 0
        fine_tuning = False
        while trainer.epoch():
            current = cls(
                name,
                config,
                engine,
                trainer.input_filters,
                trainer.output_filters,
                trainer.epoch_err_stat,  # type: ignore[arg-type]
                validation,
            )
            if best is None:
                best, best_attempt, best_epoch = current, trainer.attempt, trainer.attempt_epoch
            if trainer.attempt_epoch == 1:
                last_improvement, last_improvement_epoch = None, 0
                fine_tuning = False
            if last_improvement is None or current.is_better(last_improvement, training_only):
                last_improvement, last_improvement_epoch = current, trainer.attempt_epoch

            stop_all = False
            if current.is_better(best, training_only):
                best, best_attempt, best_epoch = current, trainer.attempt, trainer.attempt_epoch
                if engage_validation:
                    fine_tuning = (
                        task_type != REGRESSION
                        and best.confidence_metrics.binary_accuracy == 1.0  # type: ignore[union-attr]
                    )
            else:
                stop_all = engage_validation and fine_tuning
            stop_all = stop_all or (fine_tuning and trainer.attempt_epoch == trainer.max_attempt_epochs)

            train_rmse = current.training_err_stat.data.total.rms
            if not stop_all and not engage_validation:
                if task_type == REGRESSION:
                    stop_all = train_rmse < RMSE_THRESHOLD
                else:
                    stop_all = current.training_err_stat.data.binary_accuracy == 1.0  # type: ignore[attr-defined]
            stop_attempt = stop_all or (
                trainer.attempt_epoch - last_improvement_epoch
                >= trainer.max_attempt_epochs * config.stop_attempt_patiency
                or train_rmse < RMSE_THRESHOLD
            )

            emit_progress(
                callbacks,
                ProgressInfo(
                    model_name=name,
                    attempt=trainer.attempt,
                    max_attempts=trainer.max_attempts,
                    epoch=trainer.attempt_epoch,
                    max_epochs=trainer.max_attempt_epochs,
                    cost=trainer.epoch_cost,
                    train_metrics=current.training_err_stat.summary(),
                    validation_metrics=(
                        current.validation_err_stat.summary()
                        if current.validation_err_stat is not None
                        else {}
                    ),
                    best_attempt=best_attempt,
                    best_epoch=best_epoch,
                    stopped=stop_attempt,
                ),
            )
            if stop_all:
                break
            if stop_attempt and not trainer.next_attempt():
                break
        if best is None:
            raise ConfigurationError("Training produced no model; check attempts and epochs")
        return best


__all__ = ["NetworkModel", "RMSE_THRESHOLD"]
