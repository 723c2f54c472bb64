"""Pipeline assembly: dataset, model build, evaluation and run artifacts."""

from __future__ import annotations

import json
import os
import time
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping

from ..core.types import ProgressInfo, RunResult
from ..data import registry
from ..reporting.artifacts import write_json, write_manifest
from ..reporting.metrics import ConsoleProgress, CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from ..reporting.summary import write_summary
from .config import ModelConfig, config_from_dict, config_to_dict

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor": {
        "data": {"name": "xor", "options": {"repeat": 1}},
        "model": {
            "type": "network",
            "attempts": 3,
            "epochs": 400,
            "optimizer": {"name": "adam", "lr": 0.05},
            "hidden_layers": [{"neurons": 4, "activation": "tanh"}],
            "batch_size": "full",
        },
        "train": {
            "seed": 7,
            "name": "xor",
            "run_dir": "runs/xor",
            "enable_plots": False,
        },
    },
    "sine": {
        "data": {"name": "sine", "options": {"n_points": 200, "freq": 1.0, "seed": 0}},
        "model": {
            "type": "crossval",
            "fold_data_ratio": 0.2,
            "network": {
                "epochs": 200,
                "optimizer": {"name": "rprop"},
                "hidden_layers": [{"neurons": 16, "activation": "tanh"}],
            },
        },
        "train": {
            "seed": 0,
            "name": "sine",
            "run_dir": "runs/sine",
            "max_workers": 1,
            "enable_plots": False,
        },
    },
    "blobs": {
        "data": {"name": "blobs", "options": {"n_per_class": 40, "n_classes": 3, "seed": 0}},
        "model": {
            "type": "network",
            "epochs": 100,
            "optimizer": {"name": "adam", "lr": 0.01},
            "hidden_layers": [{"neurons": 8, "activation": "relu"}],
            "batch_size": 16,
        },
        "train": {
            "seed": 1,
            "name": "blobs",
            "run_dir": "runs/blobs",
            "enable_plots": False,
        },
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"


def _read_preset_file(path: Path) -> Mapping[str, object]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load preset files in YAML format") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported preset file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Preset {path.name} must decode to a mapping")
    return data


def _file_presets() -> Dict[str, Mapping[str, object]]:
    presets: Dict[str, Mapping[str, object]] = {}
    if not _PRESET_DIR.exists():
        return presets
    for file in sorted(_PRESET_DIR.iterdir()):
        if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
            continue
        data = _read_preset_file(file)
        missing = {"data", "model", "train"} - set(data)
        if missing:
            raise KeyError(
                f"Preset {file.name} is missing required sections: {', '.join(sorted(missing))}"
            )
        presets[file.stem] = json.loads(json.dumps(data))
    return presets


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    available = presets()
    if name not in available:
        raise KeyError(f"Unknown preset {name!r}. Available presets: {', '.join(sorted(available))}")
    return available[name]


class _EpochCounter:
    def __init__(self) -> None:
        self.epochs = 0

    def on_progress(self, info: ProgressInfo) -> None:
        self.epochs += 1


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    """Build the configured model on the configured dataset and write artifacts.

    The run directory receives ``metrics.jsonl``/``metrics.csv`` (one record
    per model epoch), ``summary.json``, ``metrics_test.json``,
    ``manifest.json``, ``config.json`` and the pickled ``model.pkl``.
    """

    from ..models import build_model, save_model

    data_cfg = dict(config["data"])  # type: ignore[arg-type]
    train_cfg = dict(config.get("train", {}))  # type: ignore[arg-type]
    model_config: ModelConfig = config_from_dict(config.get("model", {}))  # type: ignore[arg-type]

    dataset = registry.get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    seed = int(train_cfg.get("seed", 0))
    name = str(train_cfg.get("name", dataset.name))
    workers = train_cfg.get("max_workers", os.environ.get("EASYMLP_MAX_WORKERS", 1))
    max_workers = int(workers) if workers is not None else None

    run_dir = _resolve_run_dir(train_cfg, dataset.name, model_config.type)
    run_dir.mkdir(parents=True, exist_ok=True)

    _print_startup_summary(
        dataset_name=dataset.name,
        task_type=dataset.task_type,
        samples=dataset.training.count,
        inputs=dataset.training.input_length,
        outputs=dataset.output_feature_names,
        model_type=model_config.type,
        seed=seed,
    )

    jsonl = JsonlSink(run_dir / "metrics.jsonl", seed=seed)
    csv_sink = CsvSink(run_dir / "metrics.csv")
    plots = PlotAdapter(run_dir, enable_plots=bool(train_cfg.get("enable_plots", False)))
    counter = _EpochCounter()
    callbacks: List[object] = [jsonl, csv_sink, plots, counter]
    every = int(train_cfg.get("progress_every", 0))
    if every > 0:
        callbacks.append(ConsoleProgress(every))

    model = build_model(
        model_config,
        name,
        dataset.task_type,
        dataset.output_feature_names,
        dataset.training,
        seed=seed,
        progress=callbacks,
        max_workers=max_workers,
    )
    plots.close()

    test_metrics: Mapping[str, float] = {}
    if dataset.testing is not None:
        test_metrics = model.test(dataset.testing).err_stat.summary()
    write_json(run_dir / "metrics_test.json", test_metrics)

    safe = _safe_config(config, model_config)
    write_json(run_dir / "config.json", safe)
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe,
        dataset_provenance=dataset.provenance,
    )
    summary_path = write_summary(
        jsonl.path, run_dir / "summary.json", tail=int(train_cfg.get("summary_tail", 32))
    )
    model_path = save_model(model, run_dir / "model.pkl")

    return RunResult(
        epochs=counter.epochs,
        metrics_path=str(jsonl.path),
        manifest_path=manifest,
        summary_path=str(summary_path),
        model_path=str(model_path),
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str, model_type: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / model_type


def _safe_config(config: Mapping[str, object], model_config: ModelConfig) -> Mapping[str, object]:
    copied = json.loads(json.dumps(config))
    copied["model"] = config_to_dict(model_config)
    return copied


def _print_startup_summary(
    *,
    dataset_name: str,
    task_type: str,
    samples: int,
    inputs: int,
    outputs: List[str],
    model_type: str,
    seed: int,
) -> None:
    print("=== EasyMLP run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Task          : {task_type}")
    print(f"Samples       : {samples}")
    print(f"Inputs        : {inputs}")
    print(f"Outputs       : {', '.join(outputs)}")
    print(f"Model         : {model_type}")
    print(f"Seed          : {seed}")
    print("===================")


__all__ = ["load_preset", "presets", "run_pipeline"]
