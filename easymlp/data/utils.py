"""Utility helpers for dataset factories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import numpy as np

from .dataset import SampleDataset


@dataclass(frozen=True)
class SplitIndices:
    """Indices for train/test partitions."""

    train: np.ndarray
    test: np.ndarray

    @property
    def sizes(self) -> Mapping[str, int]:
        return {"train": int(self.train.size), "test": int(self.test.size)}


def deterministic_split(n_samples: int, *, test_split: float = 0.2, seed: int = 0) -> SplitIndices:
    """Return deterministic train/test indices for ``test_split``."""

    if not 0 <= test_split < 1:
        raise ValueError("test_split must be in [0, 1)")

    rng = np.random.default_rng(seed)
    indices = np.arange(n_samples)
    rng.shuffle(indices)

    test_size = int(round(n_samples * test_split))
    # Ensure at least one test sample when a test split is requested
    test_size = min(max(test_size, 1 if test_split > 0 else 0), n_samples)
    if n_samples - test_size <= 0:
        raise ValueError("Not enough samples for the requested split")
    return SplitIndices(train=np.sort(indices[test_size:]), test=np.sort(indices[:test_size]))


def split_dataset(
    inputs: np.ndarray, outputs: np.ndarray, *, test_split: float, seed: int
) -> tuple[SampleDataset, SampleDataset | None]:
    """Build train/test :class:`SampleDataset` objects keeping row numbers as IDs."""

    inputs = np.asarray(inputs, dtype=np.float64)
    outputs = np.asarray(outputs, dtype=np.float64)
    if outputs.ndim == 1:
        outputs = outputs.reshape(-1, 1)
    splits = deterministic_split(inputs.shape[0], test_split=test_split, seed=seed)
    train = SampleDataset()
    for idx in splits.train:
        train.add_values(int(idx), inputs[idx], outputs[idx])
    if splits.test.size == 0:
        return train, None
    test = SampleDataset()
    for idx in splits.test:
        test.add_values(int(idx), inputs[idx], outputs[idx])
    return train, test


__all__ = ["SplitIndices", "deterministic_split", "split_dataset"]
