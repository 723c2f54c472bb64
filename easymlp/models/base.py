"""Shared behaviour of every trained model."""

from __future__ import annotations

import pickle
import threading
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Iterable, List, Sequence

import numpy as np

from ..core.errors import ConfigurationError, DataError
from ..core.types import CATEGORICAL, Array, ProgressInfo, check_task_type
from ..data.dataset import SampleDataset
from ..training.metrics import ModelConfidenceMetrics, ModelErrStat

_PROGRESS_LOCK = threading.Lock()


@dataclass(frozen=True)
class EvaluationResult:
    """Error statistics of a test run plus the computed output vectors."""

    err_stat: ModelErrStat
    computed: Array


def emit_progress(callbacks: Iterable[object] | None, info: ProgressInfo) -> None:
    """Dispatch ``info`` to progress callbacks.

    A callback may implement ``on_progress(info)``, ``on_epoch(epoch, metrics)``
    or simply be callable with the info record.
    """

    if not callbacks:
        return
    with _PROGRESS_LOCK:
        for callback in callbacks:
            if hasattr(callback, "on_progress"):
                callback.on_progress(info)  # type: ignore[attr-defined]
            elif hasattr(callback, "on_epoch"):
                callback.on_epoch(info.epoch, info.as_metrics())  # type: ignore[attr-defined]
            elif callable(callback):
                callback(info)


def member_seeds(seed: int, count: int) -> List[int]:
    """Independent, reproducible seeds for ``count`` ensemble members."""

    return [int(child.generate_state(1)[0]) for child in np.random.SeedSequence(seed).spawn(count)]


def fold_label(prefix: str, idx: int, count: int) -> str:
    return f"{prefix}{idx + 1:0{len(str(count))}d}"


class ModelBase:
    """Common surface of network and ensemble models."""

    context_id: ClassVar[str] = "Model"

    def __init__(
        self,
        name: str,
        task_type: str,
        output_feature_names: Sequence[str],
        config: Any = None,
    ) -> None:
        self.name = name or self.context_id
        self.task_type = check_task_type(task_type)
        self.output_feature_names = [str(n) for n in output_feature_names]
        if not self.output_feature_names:
            raise ConfigurationError("Missing output feature names")
        if self.task_type == CATEGORICAL and len(self.output_feature_names) < 2:
            raise ConfigurationError("Categorical task requires at least two output features")
        self.config = config
        self.confidence_metrics: ModelConfidenceMetrics | None = None

    @property
    def output_count(self) -> int:
        return len(self.output_feature_names)

    @property
    def ready(self) -> bool:
        return self.confidence_metrics is not None

    def _finalize(self, metrics: ModelConfidenceMetrics) -> None:
        self.confidence_metrics = metrics

    def _check_member(self, member: "ModelBase") -> None:
        if member.task_type != self.task_type:
            raise ConfigurationError("Member task type differs from the model task type")
        if member.output_count != self.output_count:
            raise ConfigurationError("Member output feature count differs from the model")

    # ------------------------------------------------------------------
    # Computation

    def compute_batch(self, inputs: Array) -> Array:
        """Compute natural-unit outputs for a ``(samples, inputs)`` matrix."""

        raise NotImplementedError

    def compute(self, input_vector: Sequence[float] | Array) -> Array:
        vector = np.asarray(input_vector, dtype=np.float64)
        if vector.ndim != 1:
            raise DataError("compute expects a single input vector")
        return self.compute_batch(vector.reshape(1, -1))[0]

    def test(self, dataset: SampleDataset) -> EvaluationResult:
        """Compute every sample of ``dataset`` and collect error statistics."""

        if dataset.count == 0:
            raise DataError("Testing dataset is empty")
        computed = self.compute_batch(dataset.input_matrix())
        stat = ModelErrStat.from_batches(
            self.task_type, self.output_feature_names, computed, dataset.output_matrix()
        )
        return EvaluationResult(stat, computed)

    def deep_clone(self):
        return deepcopy(self)

    # ------------------------------------------------------------------
    # Ensemble helpers

    @staticmethod
    def member_weights(members: Sequence["ModelBase"]) -> Array:
        """``(features, members)`` matrix of member feature confidences."""

        return np.array(
            [m.confidence_metrics.feature_confidences for m in members],  # type: ignore[union-attr]
            dtype=np.float64,
        ).T

    def aggregate(self, outputs: Sequence[Array], weights: Array | None) -> Array:
        """Confidence-weighted average of member outputs.

        ``outputs`` holds one ``(samples, features)`` matrix per member. Class
        probabilities are mixed by the same weighted average; categorical rows
        are rescaled to sum to one.
        """

        stacked = np.stack([np.asarray(o, dtype=np.float64) for o in outputs])
        if weights is None:
            weights = np.ones((self.output_count, stacked.shape[0]))
        weights = np.asarray(weights, dtype=np.float64)
        totals = weights.sum(axis=1, keepdims=True)
        # Features where every member has zero confidence fall back to a plain mean.
        norm = np.where(totals > 0.0, weights / np.where(totals > 0.0, totals, 1.0), 1.0 / weights.shape[1])
        result = np.einsum("mbk,km->bk", stacked, norm)
        if self.task_type == CATEGORICAL:
            sums = result.sum(axis=1, keepdims=True)
            result = np.where(sums > 0.0, result / np.where(sums > 0.0, sums, 1.0), result)
        return result

    def summary(self) -> dict:
        metrics = self.confidence_metrics.to_dict() if self.confidence_metrics else {}
        return {
            "name": self.name,
            "type": type(self).__name__,
            "task_type": self.task_type,
            "output_features": list(self.output_feature_names),
            "confidence": metrics,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, task={self.task_type})"


def save_model(model: ModelBase, path: str | Path) -> Path:
    """Pickle ``model`` to ``path`` and return the path."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        pickle.dump(model, handle, protocol=pickle.HIGHEST_PROTOCOL)
    return path


def load_model(path: str | Path) -> ModelBase:
    with Path(path).open("rb") as handle:
        model = pickle.load(handle)
    if not isinstance(model, ModelBase):
        raise TypeError(f"{path} does not contain an easymlp model")
    return model


__all__ = [
    "EvaluationResult",
    "ModelBase",
    "emit_progress",
    "fold_label",
    "load_model",
    "member_seeds",
    "save_model",
]
