"""Sample containers consumed by the training engine and the ensembles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Sequence

import numpy as np

from ..core.errors import DataError
from ..core.parallel import run_ordered
from ..core.types import (
    BIN_DECISION_BORDER,
    BINARY,
    REGRESSION,
    Array,
    check_task_type,
    round_half_away,
)
from .filters import INPUT_USE, OUTPUT_USE, BinFeatureFilter, FeatureFilter, RealFeatureFilter

MAX_FOLD_DATA_RATIO = 0.5


def _frozen_vector(values: Sequence[float] | Array, label: str) -> Array:
    arr = np.array(values, dtype=np.float64).reshape(-1)
    if not np.all(np.isfinite(arr)):
        raise DataError(f"{label} vector contains non-finite values")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Sample:
    """Immutable (input, output, id) triplet."""

    id: int
    input: Array
    output: Array

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", int(self.id))
        object.__setattr__(self, "input", _frozen_vector(self.input, "Input"))
        object.__setattr__(self, "output", _frozen_vector(self.output, "Output"))

    def with_id(self, sample_id: int) -> "Sample":
        return Sample(sample_id, self.input, self.output)


class SampleDataset:
    """Ordered collection of samples with an ID index."""

    def __init__(self, samples: Iterable[Sample] | None = None) -> None:
        self.samples: List[Sample] = []
        self._index: Dict[int, Sample] = {}
        for sample in samples or ():
            self.add_sample(sample)

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def from_arrays(
        cls, inputs: Sequence[Sequence[float]] | Array, outputs: Sequence[Sequence[float]] | Array
    ) -> "SampleDataset":
        """Create a dataset whose sample IDs are the row positions."""

        inputs = np.asarray(inputs, dtype=np.float64)
        outputs = np.asarray(outputs, dtype=np.float64)
        if inputs.ndim == 1:
            inputs = inputs.reshape(-1, 1)
        if outputs.ndim == 1:
            outputs = outputs.reshape(-1, 1)
        if inputs.shape[0] != outputs.shape[0]:
            raise DataError(
                f"Got {inputs.shape[0]} input vectors but {outputs.shape[0]} output vectors"
            )
        dataset = cls()
        for idx, (x, y) in enumerate(zip(inputs, outputs)):
            dataset.add_values(idx, x, y)
        return dataset

    def add_sample(self, sample: Sample) -> None:
        if sample.id in self._index:
            raise DataError(f"Sample ID {sample.id} already exists in the dataset")
        self.samples.append(sample)
        self._index[sample.id] = sample

    def add_values(self, sample_id: int, inputs: Sequence[float], outputs: Sequence[float]) -> None:
        self.add_sample(Sample(sample_id, inputs, outputs))

    def add(self, dataset: "SampleDataset") -> None:
        for sample in dataset:
            self.add_sample(sample)

    # ------------------------------------------------------------------
    # Inspection

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self.samples)

    def __getitem__(self, idx: int) -> Sample:
        return self.samples[idx]

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def input_length(self) -> int:
        return int(self.samples[0].input.size) if self.samples else 0

    @property
    def output_length(self) -> int:
        return int(self.samples[0].output.size) if self.samples else 0

    def get_sample(self, sample_id: int) -> Sample:
        try:
            return self._index[int(sample_id)]
        except KeyError as exc:
            raise KeyError(f"Unknown sample ID: {sample_id}") from exc

    @property
    def is_consistent(self) -> bool:
        """All output vectors share one length."""

        return len({s.output.size for s in self.samples}) <= 1

    @property
    def is_uniform(self) -> bool:
        """All input vectors share one length and all outputs another."""

        return len({(s.input.size, s.output.size) for s in self.samples}) <= 1

    def check_uniform(self) -> None:
        if not self.samples:
            raise DataError("Dataset is empty")
        if not self.is_uniform:
            raise DataError("Dataset is not uniform")

    def input_matrix(self) -> Array:
        return np.vstack([s.input for s in self.samples]) if self.samples else np.empty((0, 0))

    def output_matrix(self) -> Array:
        return np.vstack([s.output for s in self.samples]) if self.samples else np.empty((0, 0))

    # ------------------------------------------------------------------
    # Reordering and partitioning

    def sort_by_id(self) -> None:
        self.samples.sort(key=lambda s: s.id)

    def shallow_clone(self) -> "SampleDataset":
        """New container sharing the (immutable) samples."""

        clone = SampleDataset()
        clone.samples = list(self.samples)
        clone._index = dict(self._index)
        return clone

    def shuffle(self, rng: np.random.Generator) -> None:
        order = rng.permutation(len(self.samples))
        self.samples = [self.samples[i] for i in order]

    def split(self, n_second: int) -> tuple["SampleDataset", "SampleDataset"]:
        """Split off the last ``n_second`` samples."""

        if n_second <= 0:
            raise ValueError(f"Second dataset size must be > 0, got {n_second}")
        if n_second >= self.count:
            raise ValueError(
                f"Second dataset size must be < {self.count}, got {n_second}"
            )
        cut = self.count - n_second
        return SampleDataset(self.samples[:cut]), SampleDataset(self.samples[cut:])

    def folderize_by_size(self, n_per_subset: int) -> List["SampleDataset"]:
        """Chop the dataset into consecutive subsets of ``n_per_subset`` samples."""

        size = max(1, int(n_per_subset))
        return [
            SampleDataset(self.samples[pos : pos + size])
            for pos in range(0, max(1, self.count), size)
        ]

    def folderize(self, fold_data_ratio: float, task_type: str) -> List["SampleDataset"]:
        """Split into folds for cross-validation, keeping class balance where possible."""

        check_task_type(task_type)
        if self.count < 2:
            raise DataError(f"Insufficient number of samples ({self.count}); minimum is 2")
        ratio = min(float(fold_data_ratio), MAX_FOLD_DATA_RATIO)
        fold_size = max(1, round_half_away(self.count * ratio))
        num_folds = round_half_away(self.count / fold_size)
        num_outputs = self.output_length

        if task_type == REGRESSION or (task_type == BINARY and num_outputs > 1):
            folds = [
                SampleDataset(self.samples[i * fold_size : (i + 1) * fold_size])
                for i in range(num_folds)
            ]
            rest = self.samples[num_folds * fold_size :]
            for i, sample in enumerate(rest):
                folds[i % len(folds)].add_sample(sample)
            return folds

        if num_outputs == 1:
            bin1 = [s for s in self.samples if s.output[0] >= BIN_DECISION_BORDER]
            bin0 = [s for s in self.samples if s.output[0] < BIN_DECISION_BORDER]
            min01 = min(len(bin0), len(bin1))
            if min01 < 2:
                raise DataError("Insufficient bin 0 or bin 1 samples (less than 2)")
            num_folds = min(num_folds, min01)
            n0 = max(1, len(bin0) // num_folds)
            n1 = max(1, len(bin1) // num_folds)
            folds = []
            for i in range(num_folds):
                fold = SampleDataset(bin0[i * n0 : (i + 1) * n0])
                fold.add(SampleDataset(bin1[i * n1 : (i + 1) * n1]))
                folds.append(fold)
            for i, sample in enumerate(bin0[num_folds * n0 :]):
                folds[i % num_folds].add_sample(sample)
            for i, sample in enumerate(bin1[num_folds * n1 :]):
                folds[i % num_folds].add_sample(sample)
            return folds

        # Several binary outputs: one-hot classification.
        class_members: List[List[Sample]] = [[] for _ in range(num_outputs)]
        for idx, sample in enumerate(self.samples):
            hot = np.flatnonzero(sample.output >= BIN_DECISION_BORDER)
            if hot.size != 1:
                raise DataError(
                    f"Inconsistency on data index {idx}: output vector has "
                    f"{hot.size} feature(s) with bin value 1"
                )
            class_members[int(hot[0])].append(sample)
        max_folds = self.count
        for members in class_members:
            max_folds = min(max_folds, len(members), self.count - len(members))
        num_folds = min(num_folds, max_folds)
        if num_folds < 1:
            raise DataError("Every class needs at least one sample to create folds")
        folds = [SampleDataset() for _ in range(num_folds)]
        for members in class_members:
            for i, sample in enumerate(members):
                folds[i % num_folds].add_sample(sample)
        return folds

    # ------------------------------------------------------------------
    # Standardisation

    def prepare_feature_filters(
        self, task_type: str, *, max_workers: int | None = 1
    ) -> tuple[List[FeatureFilter], List[FeatureFilter]]:
        """Fit one filter per input and output feature column."""

        check_task_type(task_type)
        self.check_uniform()
        inputs = self.input_matrix()
        outputs = self.output_matrix()

        def _fit_input(column: int) -> FeatureFilter:
            flt = RealFeatureFilter(INPUT_USE)
            flt.update_many(inputs[:, column])
            return flt

        def _fit_output(column: int) -> FeatureFilter:
            if task_type == REGRESSION:
                flt: FeatureFilter = RealFeatureFilter(OUTPUT_USE)
                flt.update_many(outputs[:, column])
            else:
                flt = BinFeatureFilter(OUTPUT_USE)
                flt.update_many(outputs[:, column])
            return flt

        input_filters = run_ordered(range(inputs.shape[1]), _fit_input, max_workers=max_workers)
        output_filters = run_ordered(range(outputs.shape[1]), _fit_output, max_workers=max_workers)
        return input_filters, output_filters

    def create_standardized(
        self, task_type: str, centered: bool = True, *, max_workers: int | None = 1
    ) -> tuple["SampleDataset", List[FeatureFilter], List[FeatureFilter]]:
        """Return the filtered dataset together with the fitted filters."""

        input_filters, output_filters = self.prepare_feature_filters(
            task_type, max_workers=max_workers
        )
        inputs = apply_filters(input_filters, self.input_matrix(), centered)
        outputs = apply_filters(output_filters, self.output_matrix(), centered)
        std = SampleDataset()
        for sample, x, y in zip(self.samples, inputs, outputs):
            std.add_values(sample.id, x, y)
        return std, input_filters, output_filters

    @staticmethod
    def create_shuffled_similar(
        rng: np.random.Generator,
        task_type: str,
        training: "SampleDataset",
        testing: "SampleDataset",
    ) -> tuple["SampleDataset", "SampleDataset"]:
        """Reshuffle train+test into new sets of the same sizes.

        Classification keeps the per-output-vector composition of the
        original training set.
        """

        check_task_type(task_type)
        if not training.is_consistent:
            raise DataError("Original training data is not consistent")
        if not testing.is_consistent:
            raise DataError("Original testing data is not consistent")
        if training.output_length != testing.output_length:
            raise DataError("Training and testing data have different output lengths")
        pool = SampleDataset()
        for sample in list(training) + list(testing):
            pool.add_sample(sample.with_id(pool.count))
        pool.shuffle(rng)
        if task_type == REGRESSION:
            return (
                SampleDataset(pool.samples[: training.count]),
                SampleDataset(pool.samples[training.count :]),
            )
        remaining = list(pool.samples)
        new_training = SampleDataset()
        for original in training:
            for pos, candidate in enumerate(remaining):
                if np.array_equal(candidate.output, original.output):
                    new_training.add_sample(candidate)
                    del remaining[pos]
                    break
        return new_training, SampleDataset(remaining)

    def __repr__(self) -> str:
        return (
            f"SampleDataset(count={self.count}, inputs={self.input_length}, "
            f"outputs={self.output_length})"
        )


def apply_filters(filters: Sequence[FeatureFilter], matrix: Array, centered: bool = True) -> Array:
    """Apply one filter per column of ``matrix``."""

    out = np.empty_like(matrix, dtype=np.float64)
    for column, flt in enumerate(filters):
        out[:, column] = flt.apply_filter(matrix[:, column], centered)
    return out


def reverse_filters(filters: Sequence[FeatureFilter], matrix: Array, centered: bool = True) -> Array:
    """Invert :func:`apply_filters` column by column."""

    out = np.empty_like(matrix, dtype=np.float64)
    for column, flt in enumerate(filters):
        out[:, column] = flt.apply_reverse(matrix[:, column], centered)
    return out


__all__ = [
    "MAX_FOLD_DATA_RATIO",
    "Sample",
    "SampleDataset",
    "apply_filters",
    "reverse_filters",
]
