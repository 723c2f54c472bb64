"""EasyMLP public API."""

from .core import activations, optimizers  # noqa: F401
from .core.errors import (
    ConfigurationError,
    DataError,
    EasyMLPError,
    NumericInstabilityError,
    UnsupportedOperationError,
)
from .core.types import ProgressInfo, RunResult
from .data import Sample, SampleDataset, get_dataset
from .models import (
    CompositeModel,
    CrossValModel,
    NetworkModel,
    StackingModel,
    build_model,
    load_model,
    save_model,
)
from .training.config import (
    CompositeModelConfig,
    CrossValModelConfig,
    HiddenLayerConfig,
    NetworkModelConfig,
    StackingModelConfig,
    config_from_dict,
    config_to_dict,
)
from .training.pipelines import load_preset, presets, run_pipeline

__version__ = "0.1.0"

__all__ = [
    "CompositeModel",
    "CompositeModelConfig",
    "ConfigurationError",
    "CrossValModel",
    "CrossValModelConfig",
    "DataError",
    "EasyMLPError",
    "HiddenLayerConfig",
    "NetworkModel",
    "NetworkModelConfig",
    "NumericInstabilityError",
    "ProgressInfo",
    "RunResult",
    "Sample",
    "SampleDataset",
    "StackingModel",
    "StackingModelConfig",
    "UnsupportedOperationError",
    "activations",
    "build_model",
    "config_from_dict",
    "config_to_dict",
    "get_dataset",
    "load_model",
    "load_preset",
    "optimizers",
    "presets",
    "run_pipeline",
    "save_model",
]
