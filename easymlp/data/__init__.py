"""Datasets, feature filters and the dataset registry."""

# Ensure built-in datasets register themselves when the package is imported.
from . import csv_generic as _csv_generic  # noqa: F401
from .dataset import Sample, SampleDataset, apply_filters, reverse_filters
from .filters import BinFeatureFilter, FeatureFilter, RealFeatureFilter
from .registry import DatasetSpec, available_datasets, get_dataset, register_dataset

__all__ = [
    "BinFeatureFilter",
    "DatasetSpec",
    "FeatureFilter",
    "RealFeatureFilter",
    "Sample",
    "SampleDataset",
    "apply_filters",
    "available_datasets",
    "get_dataset",
    "register_dataset",
    "reverse_filters",
]
