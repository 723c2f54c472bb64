"""Command line entry point for EasyMLP training runs."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Iterable

from easymlp.training import pipelines

_CSV_DATASETS = {
    "regression": "csv_regression",
    "binary": "csv_binary",
    "categorical": "csv_classification",
}


def _format_result(result) -> str:
    payload = {
        "epochs": result.epochs,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
        "model": result.model_path,
    }
    if getattr(result, "summary_path", ""):
        payload["summary"] = result.summary_path
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="xor",
        help="Preset configuration to execute",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON/YAML config override")
    parser.add_argument("--enable-plots", action="store_true", help="Write a cost curve PNG")
    parser.add_argument("--seed", type=int, help="Seed used for dataset splits and training")
    parser.add_argument("--run-dir", help="Directory receiving the run artifacts")
    parser.add_argument("--csv-path", help="Train on this CSV file instead of the preset data")
    parser.add_argument(
        "--target-col",
        default="target",
        help="Target column(s) of the CSV file, comma separated",
    )
    parser.add_argument(
        "--task-type",
        choices=sorted(_CSV_DATASETS),
        default="regression",
        help="Task type of the CSV targets",
    )
    parser.add_argument(
        "--progress-every",
        type=int,
        help="Print a status line every N epochs (0 disables)",
    )
    parser.add_argument(
        "--list-presets", action="store_true", help="List available presets and exit"
    )
    parser.add_argument(
        "--dump-config", type=Path, help="Dump the resolved config to a JSON file"
    )
    return parser.parse_args(argv)


def _load_override(path: Path) -> dict:
    text = path.read_text()
    if path.suffix in {".yml", ".yaml"}:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load YAML configs") from exc
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))

    if args.config:
        override = _load_override(args.config)
        if {"data", "model", "train"} <= set(override.keys()):
            config = json.loads(json.dumps(override))
        else:
            config = _merge(config, override)

    train_cfg = config.setdefault("train", {})
    if args.enable_plots:
        train_cfg["enable_plots"] = True
    if args.seed is not None:
        train_cfg["seed"] = int(args.seed)
    if args.run_dir:
        train_cfg["run_dir"] = args.run_dir
    if args.progress_every is not None:
        train_cfg["progress_every"] = int(args.progress_every)

    if args.csv_path:
        options = {"csv_path": args.csv_path, "target_col": args.target_col}
        if args.seed is not None:
            options["seed"] = int(args.seed)
        config["data"] = {"name": _CSV_DATASETS[args.task_type], "options": options}
        train_cfg["name"] = Path(args.csv_path).stem

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)
    print(_format_result(result))


if __name__ == "__main__":
    main()
