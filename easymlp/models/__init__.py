"""Trained model types and their builders."""

from .base import EvaluationResult, ModelBase, emit_progress, load_model, save_model
from .composite import CompositeModel
from .crossval import CrossValModel
from .factory import build_model
from .network import NetworkModel
from .stacking import StackingModel

__all__ = [
    "CompositeModel",
    "CrossValModel",
    "EvaluationResult",
    "ModelBase",
    "NetworkModel",
    "StackingModel",
    "build_model",
    "emit_progress",
    "load_model",
    "save_model",
]
