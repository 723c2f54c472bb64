"""Generic CSV loaders for regression, binary and categorical tasks."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder

from ..core.errors import DataError
from ..core.types import BINARY, CATEGORICAL, REGRESSION
from .registry import DatasetSpec, register_dataset
from .utils import split_dataset


def _load_csv(path: Path, target_cols: list[str]) -> tuple[np.ndarray, pd.DataFrame]:
    df = pd.read_csv(path)
    missing = [col for col in target_cols if col not in df.columns]
    if missing:
        raise KeyError(f"Target column(s) {missing!r} not found in CSV")
    y = df[target_cols]
    X = df.drop(columns=target_cols).to_numpy(dtype=np.float64)
    return X, y


def _target_list(target_col: str | list[str]) -> list[str]:
    if isinstance(target_col, str):
        return [col.strip() for col in target_col.split(",") if col.strip()]
    return list(target_col)


@register_dataset("csv_regression")
def load_csv_regression(
    *,
    csv_path: str | Path,
    target_col: str | list[str] = "target",
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Load a regression dataset; every target column is one output feature."""

    path = Path(csv_path)
    targets = _target_list(target_col)
    X, y = _load_csv(path, targets)
    training, testing = split_dataset(
        X, y.to_numpy(dtype=np.float64), test_split=test_split, seed=seed
    )
    return DatasetSpec(
        name="csv_regression",
        task_type=REGRESSION,
        training=training,
        testing=testing,
        output_feature_names=targets,
        provenance={
            "path": str(path),
            "test_split": test_split,
            "seed": seed,
            "target_col": targets,
        },
    )


@register_dataset("csv_binary")
def load_csv_binary(
    *,
    csv_path: str | Path,
    target_col: str | list[str] = "target",
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Load 0/1 target columns, one binary decision per column."""

    path = Path(csv_path)
    targets = _target_list(target_col)
    X, y = _load_csv(path, targets)
    values = y.to_numpy(dtype=np.float64)
    if not np.all(np.isin(values, (0.0, 1.0))):
        raise DataError("Binary target columns must only contain 0 and 1")
    training, testing = split_dataset(X, values, test_split=test_split, seed=seed)
    return DatasetSpec(
        name="csv_binary",
        task_type=BINARY,
        training=training,
        testing=testing,
        output_feature_names=targets,
        provenance={
            "path": str(path),
            "test_split": test_split,
            "seed": seed,
            "target_col": targets,
        },
    )


@register_dataset("csv_classification")
def load_csv_classification(
    *,
    csv_path: str | Path,
    target_col: str = "target",
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Load a single label column and one-hot encode it."""

    path = Path(csv_path)
    X, y = _load_csv(path, [target_col])
    encoder = LabelEncoder()
    y_encoded = encoder.fit_transform(y[target_col].to_numpy())
    num_classes = int(np.max(y_encoded)) + 1
    if num_classes < 2:
        raise DataError("Classification data needs at least two classes")
    one_hot = np.eye(num_classes, dtype=np.float64)[y_encoded]
    training, testing = split_dataset(X, one_hot, test_split=test_split, seed=seed)
    return DatasetSpec(
        name="csv_classification",
        task_type=CATEGORICAL,
        training=training,
        testing=testing,
        output_feature_names=[str(c) for c in encoder.classes_.tolist()],
        provenance={
            "path": str(path),
            "test_split": test_split,
            "seed": seed,
            "target_col": target_col,
            "classes": [str(c) for c in encoder.classes_.tolist()],
        },
    )


__all__ = ["load_csv_binary", "load_csv_classification", "load_csv_regression"]
