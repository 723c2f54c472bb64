"""Flat-arena multilayer perceptron.

Every trainable parameter lives in one contiguous ``float64`` buffer. Layer
``i`` owns ``[weights_start, weights_start + neurons * inputs)`` holding a
neuron-major weight matrix, immediately followed by ``neurons`` biases. Layer
matrices are numpy views into that buffer, so optimizers update all layers in
one pass over the flat array.
"""

from __future__ import annotations

import json
import math
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Sequence

import numpy as np

from ..core.activations import REGISTRY as ACTIVATIONS
from ..core.activations import Activation
from ..core.errors import ConfigurationError, DataError
from ..core.types import CATEGORICAL, Array, check_task_type
from .config import HiddenLayerConfig
from .losses import OUTPUT_ACTIVATIONS
from .losses import REGISTRY as LOSSES
from .losses import Loss


@dataclass(frozen=True)
class EngineLayer:
    """Topology and arena offsets of one layer."""

    neurons: int
    inputs: int
    activation_name: str
    weights_start: int
    output_layer: bool = False

    @property
    def biases_start(self) -> int:
        return self.weights_start + self.neurons * self.inputs

    @property
    def end(self) -> int:
        return self.biases_start + self.neurons

    @property
    def activation(self) -> Activation:
        return ACTIVATIONS.get(self.activation_name)


class MLPEngine:
    """Feed-forward network over a flat weight arena."""

    def __init__(
        self,
        task_type: str,
        input_count: int,
        output_feature_names: Sequence[str],
        hidden_layers: Sequence[HiddenLayerConfig] = (),
    ) -> None:
        self.task_type = check_task_type(task_type)
        if input_count <= 0:
            raise ConfigurationError("Network requires at least one input feature")
        if not output_feature_names:
            raise ConfigurationError("Network requires at least one output feature")
        if task_type == CATEGORICAL and len(output_feature_names) < 2:
            raise ConfigurationError("Categorical task requires at least two output features")
        self.input_count = int(input_count)
        self.output_feature_names = [str(name) for name in output_feature_names]
        self.loss: Loss = LOSSES.resolve("auto", task_type=task_type)

        layers: List[EngineLayer] = []
        prev = self.input_count
        start = 0
        for cfg in hidden_layers:
            ACTIVATIONS.hidden(cfg.activation)
            layer = EngineLayer(cfg.neurons, prev, cfg.activation, start)
            layers.append(layer)
            start = layer.end
            prev = cfg.neurons
        out = EngineLayer(
            len(self.output_feature_names), prev, OUTPUT_ACTIVATIONS[task_type], start, True
        )
        layers.append(out)
        self.layers = layers
        self._activations = [layer.activation for layer in layers]
        self.weights = np.zeros(out.end, dtype=np.float64)

    # ------------------------------------------------------------------
    # Arena access

    @property
    def num_weights(self) -> int:
        return int(self.weights.size)

    @property
    def output_count(self) -> int:
        return len(self.output_feature_names)

    def activation(self, idx: int) -> Activation:
        return self._activations[idx]

    def layer_weights(self, idx: int, flat: Array | None = None) -> Array:
        """``(neurons, inputs)`` view of layer ``idx`` inside ``flat`` (default: weights)."""

        layer = self.layers[idx]
        buf = self.weights if flat is None else flat
        return buf[layer.weights_start : layer.biases_start].reshape(layer.neurons, layer.inputs)

    def layer_biases(self, idx: int, flat: Array | None = None) -> Array:
        layer = self.layers[idx]
        buf = self.weights if flat is None else flat
        return buf[layer.biases_start : layer.end]

    def randomize_weights(self, rng: np.random.Generator) -> None:
        for idx, layer in enumerate(self.layers):
            std = self._activations[idx].init_stddev(layer.inputs, layer.neurons)
            self.layer_weights(idx)[...] = rng.normal(0.0, std, size=(layer.neurons, layer.inputs))
            biases = self.layer_biases(idx)
            if layer.output_layer and self.task_type == CATEGORICAL:
                # Start near the uniform class distribution.
                biases[...] = -math.log(layer.neurons - 1.0)
            else:
                biases[...] = 0.0

    def set_weights(self, weights: Array) -> None:
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != self.weights.shape:
            raise ConfigurationError(
                f"Expected {self.num_weights} weights, got {weights.size}"
            )
        self.weights[...] = weights

    # ------------------------------------------------------------------
    # Computation

    def layer_forward(self, idx: int, inputs: Array) -> tuple[Array, Array]:
        """Return ``(activations, derivatives)`` of layer ``idx`` for an input batch."""

        sums = inputs @ self.layer_weights(idx).T + self.layer_biases(idx)
        return self._activations[idx].compute_layer(sums)

    def forward(self, inputs: Array) -> Array:
        """Compute outputs for a ``(batch, inputs)`` matrix."""

        x = np.asarray(inputs, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != self.input_count:
            raise DataError(
                f"Expected input matrix with {self.input_count} columns, got shape {x.shape}"
            )
        for idx in range(len(self.layers)):
            x, _ = self.layer_forward(idx, x)
        return x

    def compute(self, input_vector: Sequence[float] | Array) -> Array:
        vector = np.asarray(input_vector, dtype=np.float64).reshape(1, -1)
        return self.forward(vector)[0]

    # ------------------------------------------------------------------
    # Cloning and persistence

    def deep_clone(self) -> "MLPEngine":
        return deepcopy(self)

    def topology(self) -> Mapping[str, object]:
        return {
            "task_type": self.task_type,
            "input_count": self.input_count,
            "output_feature_names": list(self.output_feature_names),
            "hidden_layers": [
                {"neurons": layer.neurons, "activation": layer.activation_name}
                for layer in self.layers[:-1]
            ],
        }

    def state_dict(self) -> Mapping[str, object]:
        return {"topology": self.topology(), "weights": self.weights.copy()}

    def load_state_dict(self, state: Mapping[str, object]) -> None:
        if "weights" not in state:
            raise KeyError("Missing weights in state dict")
        topology = state.get("topology")
        if topology is not None and dict(topology) != dict(self.topology()):
            raise ConfigurationError("State dict topology does not match the engine")
        self.set_weights(state["weights"])  # type: ignore[arg-type]

    def save_checkpoint(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as handle:
            np.savez_compressed(
                handle,
                weights=self.weights,
                topology=np.array(json.dumps(self.topology())),
            )
        return path

    @classmethod
    def load_checkpoint(cls, path: str | Path) -> "MLPEngine":
        with np.load(Path(path), allow_pickle=False) as archive:
            topology = json.loads(str(archive["topology"]))
            weights = archive["weights"].copy()
        engine = cls(
            topology["task_type"],
            topology["input_count"],
            topology["output_feature_names"],
            [HiddenLayerConfig(**layer) for layer in topology["hidden_layers"]],
        )
        engine.set_weights(weights)
        return engine

    def __repr__(self) -> str:
        dims = [self.input_count] + [layer.neurons for layer in self.layers]
        return f"MLPEngine(task={self.task_type}, dims={dims}, weights={self.num_weights})"


__all__ = ["EngineLayer", "MLPEngine"]
