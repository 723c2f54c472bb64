"""Model configuration objects and their plain-mapping representation.

Configs are frozen dataclasses validated on construction. ``config_from_dict``
and ``config_to_dict`` convert to and from the mappings found in JSON or YAML
pipeline files.
"""

from __future__ import annotations

import numbers
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Sequence, Tuple, Union

from ..core.activations import REGISTRY as ACTIVATIONS
from ..core.errors import ConfigurationError
from ..core.optimizers import (
    RPropConfig,
    optimizer_config_from_dict,
    optimizer_config_to_dict,
)
from ..core.regularization import (
    DropoutConfig,
    NormConsConfig,
    RegL1Config,
    RegL2Config,
    config_from_mapping,
)
from ..core.throttle import LearningThrottleValveConfig
from ..data.dataset import MAX_FOLD_DATA_RATIO

AUTO_BATCH = "auto"
FULL_BATCH = "full"


@dataclass(frozen=True)
class HiddenLayerConfig:
    neurons: int
    activation: str = "relu"
    dropout: DropoutConfig = field(default_factory=DropoutConfig)
    reg_l1: RegL1Config = field(default_factory=RegL1Config)
    reg_l2: RegL2Config = field(default_factory=RegL2Config)
    norm_cons: NormConsConfig = field(default_factory=NormConsConfig)

    def __post_init__(self) -> None:
        if int(self.neurons) <= 0:
            raise ConfigurationError(
                f"Invalid number of layer neurons {self.neurons}; must be > 0"
            )
        object.__setattr__(self, "neurons", int(self.neurons))
        object.__setattr__(self, "activation", str(self.activation).lower())
        try:
            ACTIVATIONS.hidden(self.activation)
        except KeyError as exc:
            raise ConfigurationError(str(exc)) from exc


@dataclass(frozen=True)
class InputOptionsConfig:
    dropout: DropoutConfig = field(default_factory=DropoutConfig)


@dataclass(frozen=True)
class OutputOptionsConfig:
    reg_l1: RegL1Config = field(default_factory=RegL1Config)
    reg_l2: RegL2Config = field(default_factory=RegL2Config)
    norm_cons: NormConsConfig = field(default_factory=NormConsConfig)


@dataclass(frozen=True)
class NetworkModelConfig:
    """Single MLP trained in one or more attempts of ``epochs`` epochs."""

    type: ClassVar[str] = "network"

    attempts: int = 1
    epochs: int = 200
    optimizer: Any = field(default_factory=RPropConfig)
    hidden_layers: Tuple[HiddenLayerConfig, ...] = ()
    input_options: InputOptionsConfig = field(default_factory=InputOptionsConfig)
    output_options: OutputOptionsConfig = field(default_factory=OutputOptionsConfig)
    throttle_valve: LearningThrottleValveConfig = field(
        default_factory=LearningThrottleValveConfig
    )
    batch_size: Union[str, int] = AUTO_BATCH
    grad_clip_norm: float = 0.0
    grad_clip_val: float = 0.0
    class_balanced_loss: bool = True
    stop_attempt_patiency: float = 0.25

    def __post_init__(self) -> None:
        object.__setattr__(self, "hidden_layers", tuple(self.hidden_layers))
        if self.attempts < 1:
            raise ConfigurationError("Number of training attempts must be > 0")
        if self.epochs < 1:
            raise ConfigurationError("Number of attempt epochs must be > 0")
        batch = self.batch_size
        if isinstance(batch, str):
            batch = batch.lower()
            if batch not in {AUTO_BATCH, FULL_BATCH}:
                raise ConfigurationError(f"Unknown batch size code: {self.batch_size!r}")
            object.__setattr__(self, "batch_size", batch)
        elif isinstance(batch, bool) or not isinstance(batch, numbers.Integral) or batch <= 0:
            raise ConfigurationError(
                f"Batch size must be a positive integer, 'auto' or 'full', got {batch!r}"
            )
        else:
            object.__setattr__(self, "batch_size", int(batch))
        if self.grad_clip_norm < 0.0:
            raise ConfigurationError("Gradient clip-norm must be >= 0")
        if self.grad_clip_val < 0.0:
            raise ConfigurationError("Gradient clip-val must be >= 0")
        if self.grad_clip_norm > 0.0 and self.grad_clip_val > 0.0:
            raise ConfigurationError("Gradient clip-val and clip-norm cannot be combined")
        if not 0.0 <= self.stop_attempt_patiency < 1.0:
            raise ConfigurationError("stop_attempt_patiency must be in [0, 1)")
        if isinstance(self.optimizer, RPropConfig):
            if self.batch_size not in {AUTO_BATCH, FULL_BATCH}:
                raise ConfigurationError("RProp only allows 'auto' or 'full' batch size")
            if self.dropout_active:
                raise ConfigurationError("RProp cannot be combined with dropout")

    @property
    def dropout_active(self) -> bool:
        return self.input_options.dropout.active or any(
            layer.dropout.active for layer in self.hidden_layers
        )


def _check_fold_ratio(value: float) -> None:
    if not 0.0 < value <= MAX_FOLD_DATA_RATIO:
        raise ConfigurationError(
            f"Invalid fold_data_ratio {value}; must be > 0 and <= {MAX_FOLD_DATA_RATIO}"
        )


@dataclass(frozen=True)
class CrossValModelConfig:
    """One network per held-out fold, aggregated by feature confidence."""

    type: ClassVar[str] = "crossval"

    network: NetworkModelConfig = field(default_factory=NetworkModelConfig)
    fold_data_ratio: float = 0.1

    def __post_init__(self) -> None:
        _check_fold_ratio(self.fold_data_ratio)


@dataclass(frozen=True)
class StackingModelConfig:
    """Network stack whose hold-out outputs feed a meta-learner."""

    type: ClassVar[str] = "stacking"

    stack: Tuple[NetworkModelConfig, ...] = ()
    meta_learner: Any = field(default_factory=NetworkModelConfig)
    fold_data_ratio: float = 0.1
    route_input: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "stack", tuple(self.stack))
        if not self.stack:
            raise ConfigurationError("At least one stack network configuration is required")
        _check_fold_ratio(self.fold_data_ratio)


@dataclass(frozen=True)
class CompositeModelConfig:
    """Independent sub-models trained on all data and aggregated."""

    type: ClassVar[str] = "composite"

    models: Tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "models", tuple(self.models))
        if not self.models:
            raise ConfigurationError("At least one sub-model configuration is required")


ModelConfig = Union[
    NetworkModelConfig, CrossValModelConfig, StackingModelConfig, CompositeModelConfig
]


# ---------------------------------------------------------------------------
# Mapping conversion


def _hidden_from_dict(data: Mapping[str, Any]) -> HiddenLayerConfig:
    data = _check_known(
        dict(data),
        ["neurons", "activation", "dropout", "reg_l1", "reg_l2", "norm_cons"],
        "hidden layer",
    )
    if "neurons" not in data:
        raise ConfigurationError("Hidden layer config requires `neurons`")
    return HiddenLayerConfig(
        neurons=int(data["neurons"]),
        activation=str(data.get("activation", "relu")),
        dropout=config_from_mapping(DropoutConfig, data.get("dropout")),
        reg_l1=config_from_mapping(RegL1Config, data.get("reg_l1")),
        reg_l2=config_from_mapping(RegL2Config, data.get("reg_l2")),
        norm_cons=config_from_mapping(NormConsConfig, data.get("norm_cons")),
    )


def _check_known(data: Dict[str, Any], known: Sequence[str], label: str) -> Dict[str, Any]:
    extra = set(data) - set(known)
    if extra:
        raise ConfigurationError(f"Unknown {label} options: {', '.join(sorted(extra))}")
    return data


def network_config_from_dict(data: Mapping[str, Any]) -> NetworkModelConfig:
    data = dict(data)
    data.pop("type", None)
    _check_known(
        data,
        [f for f in NetworkModelConfig.__dataclass_fields__],
        "network",
    )
    hidden = data.pop("hidden_layers", ())
    input_opts = dict(data.pop("input_options", None) or {})
    output_opts = dict(data.pop("output_options", None) or {})
    kwargs: Dict[str, Any] = dict(data)
    kwargs["optimizer"] = optimizer_config_from_dict(data.get("optimizer"))
    kwargs["hidden_layers"] = tuple(
        layer if isinstance(layer, HiddenLayerConfig) else _hidden_from_dict(layer)
        for layer in hidden
    )
    kwargs["input_options"] = InputOptionsConfig(
        dropout=config_from_mapping(DropoutConfig, input_opts.get("dropout"))
    )
    kwargs["output_options"] = OutputOptionsConfig(
        reg_l1=config_from_mapping(RegL1Config, output_opts.get("reg_l1")),
        reg_l2=config_from_mapping(RegL2Config, output_opts.get("reg_l2")),
        norm_cons=config_from_mapping(NormConsConfig, output_opts.get("norm_cons")),
    )
    kwargs["throttle_valve"] = config_from_mapping(
        LearningThrottleValveConfig, data.get("throttle_valve")
    )
    return NetworkModelConfig(**kwargs)


def config_from_dict(data: Mapping[str, Any]) -> ModelConfig:
    """Build any model config from a mapping with a ``type`` key (default network)."""

    if isinstance(data, (NetworkModelConfig, CrossValModelConfig, StackingModelConfig, CompositeModelConfig)):
        return data
    data = dict(data)
    kind = str(data.pop("type", NetworkModelConfig.type)).lower()
    if kind == NetworkModelConfig.type:
        return network_config_from_dict(data)
    if kind == CrossValModelConfig.type:
        _check_known(data, ["network", "fold_data_ratio"], "crossval")
        return CrossValModelConfig(
            network=network_config_from_dict(data.get("network", {})),
            fold_data_ratio=float(data.get("fold_data_ratio", 0.1)),
        )
    if kind == StackingModelConfig.type:
        _check_known(data, ["stack", "meta_learner", "fold_data_ratio", "route_input"], "stacking")
        return StackingModelConfig(
            stack=tuple(network_config_from_dict(item) for item in data.get("stack", ())),
            meta_learner=config_from_dict(data.get("meta_learner", {})),
            fold_data_ratio=float(data.get("fold_data_ratio", 0.1)),
            route_input=bool(data.get("route_input", False)),
        )
    if kind == CompositeModelConfig.type:
        _check_known(data, ["models"], "composite")
        return CompositeModelConfig(
            models=tuple(config_from_dict(item) for item in data.get("models", ()))
        )
    raise ConfigurationError(f"Unknown model config type: {kind}")


def config_to_dict(config: ModelConfig) -> Dict[str, Any]:
    """Return a JSON-compatible mapping that round-trips through ``config_from_dict``."""

    if isinstance(config, NetworkModelConfig):
        payload = asdict(config)
        payload["optimizer"] = optimizer_config_to_dict(config.optimizer)
        payload["hidden_layers"] = [asdict(layer) for layer in config.hidden_layers]
        return {"type": config.type, **payload}
    if isinstance(config, CrossValModelConfig):
        return {
            "type": config.type,
            "network": config_to_dict(config.network),
            "fold_data_ratio": config.fold_data_ratio,
        }
    if isinstance(config, StackingModelConfig):
        return {
            "type": config.type,
            "stack": [config_to_dict(item) for item in config.stack],
            "meta_learner": config_to_dict(config.meta_learner),
            "fold_data_ratio": config.fold_data_ratio,
            "route_input": config.route_input,
        }
    if isinstance(config, CompositeModelConfig):
        return {"type": config.type, "models": [config_to_dict(item) for item in config.models]}
    raise ConfigurationError(f"Unsupported model config: {type(config).__name__}")


__all__ = [
    "AUTO_BATCH",
    "CompositeModelConfig",
    "CrossValModelConfig",
    "FULL_BATCH",
    "HiddenLayerConfig",
    "InputOptionsConfig",
    "ModelConfig",
    "NetworkModelConfig",
    "OutputOptionsConfig",
    "StackingModelConfig",
    "config_from_dict",
    "config_to_dict",
    "network_config_from_dict",
]
