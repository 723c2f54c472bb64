"""Task error statistics and model confidence metrics.

Every statistic is updated with ``(computed, ideal)`` pairs in natural
(unfiltered) units. Batches are passed as ``(samples, features)`` matrices.
``is_better(other)`` always answers "is ``self`` better than ``other``".
"""

from __future__ import annotations

import math
from copy import deepcopy
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

import numpy as np

from ..core.errors import DataError
from ..core.stats import BasicStat, weighted_average
from ..core.types import (
    BIN_DECISION_BORDER,
    BINARY,
    CATEGORICAL,
    EPSILON,
    REGRESSION,
    Array,
    check_task_type,
)

F_SCORE_BETA = 0.5
MISSING_VALIDATION_PENALTY = 0.05


def _as_matrix(values, width: int) -> Array:
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2 or arr.shape[1] != width:
        raise DataError(f"Expected vectors of length {width}, got shape {arr.shape}")
    return arr


def log_loss(computed: Array, ideal: Array) -> Array:
    """Binary log loss of ``computed`` probabilities against 0/1 meaning of ``ideal``."""

    c = np.clip(computed, EPSILON, 1.0 - EPSILON)
    return np.where(ideal >= BIN_DECISION_BORDER, -np.log(c), -np.log(1.0 - c))


def binary_meaning(values: Array) -> Array:
    return (np.asarray(values) >= BIN_DECISION_BORDER).astype(np.int64)


class TaskErrStat:
    """Common interface of the per-task statistics."""

    def __init__(self, output_feature_names: Sequence[str]) -> None:
        self.output_feature_names = [str(name) for name in output_feature_names]

    @property
    def output_count(self) -> int:
        return len(self.output_feature_names)

    @property
    def num_samples(self) -> int:
        raise NotImplementedError

    def update(self, computed, ideal) -> None:
        raise NotImplementedError

    def merge(self, other: "TaskErrStat") -> None:
        raise NotImplementedError

    def merge_all(self, others: Iterable["TaskErrStat"]) -> None:
        for other in others:
            self.merge(other)

    def is_better(self, other: "TaskErrStat") -> bool:
        raise NotImplementedError

    def summary(self) -> Dict[str, float]:
        raise NotImplementedError

    def deep_clone(self):
        return deepcopy(self)

    def _check_same(self, other: "TaskErrStat") -> None:
        if type(other) is not type(self):
            raise TypeError(f"Cannot combine {type(self).__name__} with {type(other).__name__}")
        if other.output_count != self.output_count:
            raise DataError("Statistics differ in the number of output features")


class SinglePrecisionErrStat(TaskErrStat):
    """Absolute-error statistic of one real-valued output feature."""

    def __init__(self, output_feature_name: str) -> None:
        super().__init__([output_feature_name])
        self.precision = BasicStat()

    @property
    def output_feature_name(self) -> str:
        return self.output_feature_names[0]

    @property
    def num_samples(self) -> int:
        return self.precision.count

    @property
    def mse(self) -> float:
        return self.precision.mean_square

    @property
    def p_score(self) -> float:
        return 1.0 / (EPSILON + self.precision.rms)

    def update(self, computed, ideal) -> None:
        computed = np.asarray(computed, dtype=np.float64).reshape(-1)
        ideal = np.asarray(ideal, dtype=np.float64).reshape(-1)
        self.precision.add_many(np.abs(ideal - computed))

    def merge(self, other: "TaskErrStat") -> None:
        self._check_same(other)
        self.precision.merge(other.precision)  # type: ignore[attr-defined]

    def is_better(self, other: "TaskErrStat") -> bool:
        self._check_same(other)
        return self.precision.rms < other.precision.rms  # type: ignore[attr-defined]

    def summary(self) -> Dict[str, float]:
        return {"rmse": self.precision.rms, "p_score": self.p_score}


class SingleDecisionErrStat(SinglePrecisionErrStat):
    """Binary decision statistic of one output feature."""

    def __init__(self, output_feature_name: str) -> None:
        super().__init__(output_feature_name)
        self.ideal = BasicStat()
        self.false_flag = (BasicStat(), BasicStat())
        self.wrong_decision = BasicStat()
        self.log_loss = BasicStat()

    @property
    def binary_accuracy(self) -> float:
        return 1.0 - self.wrong_decision.mean

    @property
    def cross_entropy(self) -> float:
        return self.log_loss.mean

    @property
    def f_score(self) -> float:
        sq_beta = F_SCORE_BETA * F_SCORE_BETA
        true_positive = self.ideal.sum - self.false_flag[1].sum
        false_positive = self.false_flag[0].sum
        false_negative = self.false_flag[1].sum
        precision = true_positive / (EPSILON + true_positive + false_positive)
        recall = true_positive / (EPSILON + true_positive + false_negative)
        return (1.0 + sq_beta) * (precision * recall) / (sq_beta * precision + recall + EPSILON)

    def update(self, computed, ideal) -> None:
        computed = np.asarray(computed, dtype=np.float64).reshape(-1)
        ideal = np.asarray(ideal, dtype=np.float64).reshape(-1)
        super().update(computed, ideal)
        ideal_bin = binary_meaning(ideal)
        errors = (binary_meaning(computed) != ideal_bin).astype(np.float64)
        self.ideal.add_many(ideal_bin)
        self.false_flag[0].add_many(errors[ideal_bin == 0])
        self.false_flag[1].add_many(errors[ideal_bin == 1])
        self.wrong_decision.add_many(errors)
        self.log_loss.add_many(log_loss(computed, ideal))

    def merge(self, other: "TaskErrStat") -> None:
        super().merge(other)
        self.ideal.merge(other.ideal)  # type: ignore[attr-defined]
        for mine, theirs in zip(self.false_flag, other.false_flag):  # type: ignore[attr-defined]
            mine.merge(theirs)
        self.wrong_decision.merge(other.wrong_decision)  # type: ignore[attr-defined]
        self.log_loss.merge(other.log_loss)  # type: ignore[attr-defined]

    def is_better(self, other: "TaskErrStat") -> bool:
        self._check_same(other)
        theirs = other.wrong_decision.sum  # type: ignore[attr-defined]
        if self.wrong_decision.sum != theirs:
            return self.wrong_decision.sum < theirs
        return self.log_loss.rms < other.log_loss.rms  # type: ignore[attr-defined]

    def summary(self) -> Dict[str, float]:
        return {
            "binary_accuracy": self.binary_accuracy,
            "false_positive": self.false_flag[0].sum,
            "false_negative": self.false_flag[1].sum,
            "f_score": self.f_score,
            "log_loss": self.cross_entropy,
            "rmse": self.precision.rms,
        }


class MultiplePrecisionErrStat(TaskErrStat):
    """Per-feature and total absolute-error statistics."""

    def __init__(self, output_feature_names: Sequence[str]) -> None:
        super().__init__(output_feature_names)
        self.feature_stats: List[SinglePrecisionErrStat] = [
            self._feature_stat(name) for name in self.output_feature_names
        ]
        self.total = BasicStat()

    def _feature_stat(self, name: str) -> SinglePrecisionErrStat:
        return SinglePrecisionErrStat(name)

    @property
    def num_samples(self) -> int:
        return self.total.count // self.output_count

    @property
    def mse(self) -> float:
        return self.total.mean_square

    def update(self, computed, ideal) -> None:
        computed = _as_matrix(computed, self.output_count)
        ideal = _as_matrix(ideal, self.output_count)
        if computed.shape != ideal.shape:
            raise DataError("Computed and ideal batches differ in shape")
        for idx, stat in enumerate(self.feature_stats):
            stat.update(computed[:, idx], ideal[:, idx])
        self.total.add_many(np.abs(ideal - computed))

    def merge(self, other: "TaskErrStat") -> None:
        self._check_same(other)
        for mine, theirs in zip(self.feature_stats, other.feature_stats):  # type: ignore[attr-defined]
            mine.merge(theirs)
        self.total.merge(other.total)  # type: ignore[attr-defined]

    def is_better(self, other: "TaskErrStat") -> bool:
        self._check_same(other)
        return self.total.rms < other.total.rms  # type: ignore[attr-defined]

    def summary(self) -> Dict[str, float]:
        return {"rmse": self.total.rms, "mse": self.mse}


class MultipleDecisionErrStat(MultiplePrecisionErrStat):
    """Binary decision statistics over several 0/1 output features."""

    feature_stats: List[SingleDecisionErrStat]

    def __init__(self, output_feature_names: Sequence[str]) -> None:
        super().__init__(output_feature_names)
        self.total_false_flag = (BasicStat(), BasicStat())
        self.total_wrong_decision = BasicStat()
        self.total_log_loss = BasicStat()

    def _feature_stat(self, name: str) -> SingleDecisionErrStat:
        return SingleDecisionErrStat(name)

    @property
    def binary_accuracy(self) -> float:
        return 1.0 - self.total_wrong_decision.mean

    @property
    def cross_entropy(self) -> float:
        return self.total_log_loss.mean

    def update(self, computed, ideal) -> None:
        computed = _as_matrix(computed, self.output_count)
        ideal = _as_matrix(ideal, self.output_count)
        super().update(computed, ideal)
        ideal_bin = binary_meaning(ideal)
        errors = (binary_meaning(computed) != ideal_bin).astype(np.float64)
        self.total_false_flag[0].add_many(errors[ideal_bin == 0])
        self.total_false_flag[1].add_many(errors[ideal_bin == 1])
        self.total_wrong_decision.add_many(errors)
        self.total_log_loss.add_many(log_loss(computed, ideal))

    def merge(self, other: "TaskErrStat") -> None:
        super().merge(other)
        for mine, theirs in zip(self.total_false_flag, other.total_false_flag):  # type: ignore[attr-defined]
            mine.merge(theirs)
        self.total_wrong_decision.merge(other.total_wrong_decision)  # type: ignore[attr-defined]
        self.total_log_loss.merge(other.total_log_loss)  # type: ignore[attr-defined]

    def is_better(self, other: "TaskErrStat") -> bool:
        self._check_same(other)
        theirs = other.total_wrong_decision.sum  # type: ignore[attr-defined]
        if self.total_wrong_decision.sum != theirs:
            return self.total_wrong_decision.sum < theirs
        return self.total_log_loss.rms < other.total_log_loss.rms  # type: ignore[attr-defined]

    def summary(self) -> Dict[str, float]:
        return {
            "binary_accuracy": self.binary_accuracy,
            "log_loss": self.cross_entropy,
            "rmse": self.total.rms,
        }


class CategoricalErrStat(MultipleDecisionErrStat):
    """Classification statistics over one-hot encoded class outputs."""

    def __init__(self, output_feature_names: Sequence[str]) -> None:
        super().__init__(output_feature_names)
        self.classification_log_loss = BasicStat()
        self.wrong_classification = BasicStat()
        self.low_probability = BasicStat()

    @property
    def accuracy(self) -> float:
        return 1.0 - self.wrong_classification.mean

    @property
    def classification_cross_entropy(self) -> float:
        return self.classification_log_loss.mean

    @property
    def inadequate_classifications(self) -> int:
        return int(self.wrong_classification.sum + self.low_probability.sum)

    def update(self, computed, ideal) -> None:
        computed = _as_matrix(computed, self.output_count)
        ideal = _as_matrix(ideal, self.output_count)
        super().update(computed, ideal)
        hot = ideal >= BIN_DECISION_BORDER
        self.classification_log_loss.add_many(log_loss(computed[hot], ideal[hot]))
        winners = np.argmax(computed, axis=1)
        top = computed[np.arange(computed.shape[0]), winners]
        ties = np.sum(computed == top[:, None], axis=1)
        wrong = (winners != np.argmax(ideal, axis=1)) | (ties > 1)
        self.wrong_classification.add_many(wrong.astype(np.float64))
        self.low_probability.add_many((top[~wrong] < BIN_DECISION_BORDER).astype(np.float64))

    def merge(self, other: "TaskErrStat") -> None:
        super().merge(other)
        self.classification_log_loss.merge(other.classification_log_loss)  # type: ignore[attr-defined]
        self.wrong_classification.merge(other.wrong_classification)  # type: ignore[attr-defined]
        self.low_probability.merge(other.low_probability)  # type: ignore[attr-defined]

    def is_better(self, other: "TaskErrStat") -> bool:
        self._check_same(other)
        mine = (self.wrong_classification.sum, self.low_probability.sum)
        theirs = (other.wrong_classification.sum, other.low_probability.sum)  # type: ignore[attr-defined]
        if mine != theirs:
            return mine < theirs
        return self.classification_log_loss.rms < other.classification_log_loss.rms  # type: ignore[attr-defined]

    def summary(self) -> Dict[str, float]:
        payload = super().summary()
        payload.update(
            {
                "accuracy": self.accuracy,
                "class_log_loss": self.classification_cross_entropy,
                "low_probability": self.low_probability.sum,
            }
        )
        return payload


_TASK_STATS = {
    REGRESSION: MultiplePrecisionErrStat,
    BINARY: MultipleDecisionErrStat,
    CATEGORICAL: CategoricalErrStat,
}


class ModelErrStat:
    """Task-appropriate error statistics of a model's outputs."""

    def __init__(self, task_type: str, output_feature_names: Sequence[str]) -> None:
        self.task_type = check_task_type(task_type)
        self.data: MultiplePrecisionErrStat = _TASK_STATS[task_type](output_feature_names)

    @classmethod
    def from_batches(
        cls,
        task_type: str,
        output_feature_names: Sequence[str],
        computed,
        ideal,
    ) -> "ModelErrStat":
        stat = cls(task_type, output_feature_names)
        stat.update(computed, ideal)
        return stat

    @property
    def output_feature_names(self) -> List[str]:
        return self.data.output_feature_names

    @property
    def num_samples(self) -> int:
        return self.data.num_samples

    def update(self, computed, ideal) -> None:
        self.data.update(computed, ideal)

    def merge(self, other: "ModelErrStat") -> None:
        if other.task_type != self.task_type:
            raise DataError("Cannot merge statistics of different task types")
        self.data.merge(other.data)

    def feature_confidences(self) -> Array:
        if self.task_type == REGRESSION:
            return np.array([stat.p_score for stat in self.data.feature_stats])
        return np.array([stat.f_score for stat in self.data.feature_stats])  # type: ignore[attr-defined]

    def is_better(self, other: "ModelErrStat") -> bool:
        return self.data.is_better(other.data)

    def summary(self) -> Dict[str, float]:
        payload = self.data.summary()
        payload["samples"] = float(self.num_samples)
        return payload

    def deep_clone(self) -> "ModelErrStat":
        return deepcopy(self)

    def __repr__(self) -> str:
        return f"ModelErrStat(task={self.task_type}, samples={self.num_samples})"


@dataclass(frozen=True)
class ModelConfidenceMetrics:
    """Figures used to rank trained models and weight them in ensembles."""

    task_type: str
    cost_indicator: float
    categorical_accuracy: float
    binary_accuracy: float
    feature_confidences: tuple

    @property
    def confidence_rms(self) -> float:
        return BasicStat(self.feature_confidences).rms

    @classmethod
    def from_stats(
        cls, training: ModelErrStat, validation: ModelErrStat | None = None
    ) -> "ModelConfidenceMetrics":
        task = training.task_type
        cat_acc = bin_acc = 0.0
        if validation is None:
            data = training.data
            if task == CATEGORICAL:
                cost = data.classification_log_loss.rms  # type: ignore[attr-defined]
                cat_acc = data.accuracy  # type: ignore[attr-defined]
                bin_acc = data.binary_accuracy  # type: ignore[attr-defined]
            elif task == BINARY:
                cost = data.total_log_loss.rms  # type: ignore[attr-defined]
                bin_acc = data.binary_accuracy  # type: ignore[attr-defined]
            else:
                cost = data.total.rms
            confidences = training.feature_confidences() * (1.0 - MISSING_VALIDATION_PENALTY)
        else:
            t_data, v_data = training.data, validation.data
            weight = training.num_samples / validation.num_samples
            denominator = training.num_samples + validation.num_samples * weight

            def _blend(t: float, v: float) -> float:
                return (t + weight * v) / denominator

            if task == CATEGORICAL:
                cost = math.sqrt(
                    _blend(
                        t_data.classification_log_loss.sum_of_squares,  # type: ignore[attr-defined]
                        v_data.classification_log_loss.sum_of_squares,  # type: ignore[attr-defined]
                    )
                )
                cat_acc = 1.0 - _blend(
                    t_data.wrong_classification.sum,  # type: ignore[attr-defined]
                    v_data.wrong_classification.sum,  # type: ignore[attr-defined]
                )
            elif task == BINARY:
                cost = math.sqrt(
                    _blend(
                        t_data.total_log_loss.sum_of_squares,  # type: ignore[attr-defined]
                        v_data.total_log_loss.sum_of_squares,  # type: ignore[attr-defined]
                    )
                )
            else:
                cost = math.sqrt(_blend(t_data.total.sum_of_squares, v_data.total.sum_of_squares))
            if task != REGRESSION:
                bin_acc = 1.0 - _blend(
                    t_data.total_wrong_decision.sum,  # type: ignore[attr-defined]
                    v_data.total_wrong_decision.sum,  # type: ignore[attr-defined]
                )
            confidences = (
                training.feature_confidences() + weight * validation.feature_confidences()
            ) / (1.0 + weight)
        return cls(task, float(cost), float(cat_acc), float(bin_acc), tuple(float(c) for c in confidences))

    @classmethod
    def aggregate(
        cls, task_type: str, metrics: Sequence["ModelConfidenceMetrics"]
    ) -> "ModelConfidenceMetrics":
        """Plain average of several members' metrics."""

        if not metrics:
            raise ValueError("At least one metrics instance is required")
        ones = [1.0] * len(metrics)
        confidences = np.mean([m.feature_confidences for m in metrics], axis=0)
        return cls(
            task_type,
            weighted_average([m.cost_indicator for m in metrics], ones),
            weighted_average([m.categorical_accuracy for m in metrics], ones),
            weighted_average([m.binary_accuracy for m in metrics], ones),
            tuple(float(c) for c in confidences),
        )

    @staticmethod
    def compare(first: "ModelConfidenceMetrics", second: "ModelConfidenceMetrics") -> int:
        """Return -1 when ``first`` ranks higher, 1 when ``second`` does, else 0."""

        keys = []
        if first.task_type == CATEGORICAL:
            keys.append((first.categorical_accuracy, second.categorical_accuracy))
        if first.task_type in (CATEGORICAL, BINARY):
            keys.append((first.binary_accuracy, second.binary_accuracy))
        keys.append((first.confidence_rms, second.confidence_rms))
        # Lower cost wins, so compare it negated.
        keys.append((-first.cost_indicator, -second.cost_indicator))
        for a, b in keys:
            if a > b:
                return -1
            if a < b:
                return 1
        return 0

    def is_better(self, other: "ModelConfidenceMetrics") -> bool:
        return self.compare(self, other) < 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_type": self.task_type,
            "cost_indicator": self.cost_indicator,
            "categorical_accuracy": self.categorical_accuracy,
            "binary_accuracy": self.binary_accuracy,
            "feature_confidences": list(self.feature_confidences),
        }


__all__ = [
    "CategoricalErrStat",
    "F_SCORE_BETA",
    "ModelConfidenceMetrics",
    "ModelErrStat",
    "MultipleDecisionErrStat",
    "MultiplePrecisionErrStat",
    "SingleDecisionErrStat",
    "SinglePrecisionErrStat",
    "TaskErrStat",
    "binary_meaning",
    "log_loss",
]
