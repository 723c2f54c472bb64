"""Progress sinks for model training."""

from __future__ import annotations

import csv
import json
import sys
from pathlib import Path
from typing import Mapping, TextIO

from ..core.types import ProgressInfo
from .artifacts import git_sha


def _numeric(metrics: Mapping[str, object]) -> dict[str, float]:
    return {
        k: float(v)
        for k, v in metrics.items()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    }


class JsonlSink:
    """Append-only JSONL writer, one record per model epoch."""

    def __init__(
        self,
        path: str | Path,
        *,
        seed: int | None = None,
        sha: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.seed = seed
        self.sha = sha or git_sha()

    def _write(self, model: str, epoch: int, metrics: Mapping[str, object]) -> None:
        record: dict[str, object] = {
            "model": model,
            "epoch": int(epoch),
            "seed": self.seed,
            "sha": self.sha,
        }
        record.update(_numeric(metrics))
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")

    def on_progress(self, info: ProgressInfo) -> None:
        self._write(info.model_name, info.epoch, info.as_metrics())

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self._write("", epoch, metrics)

    __call__ = on_progress


class CsvSink:
    """Write progress rows to CSV; the first row fixes the column set."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self._fieldnames: list[str] | None = None

    def _write(self, model: str, epoch: int, metrics: Mapping[str, object]) -> None:
        row: dict[str, object] = {"model": model, "epoch": int(epoch)}
        row.update(_numeric(metrics))
        if self._fieldnames is None:
            self._fieldnames = sorted(row.keys())
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(
                handle, fieldnames=self._fieldnames, restval="", extrasaction="ignore"
            )
            if handle.tell() == 0:
                writer.writeheader()
            writer.writerow(row)

    def on_progress(self, info: ProgressInfo) -> None:
        self._write(info.model_name, info.epoch, info.as_metrics())

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self._write("", epoch, metrics)


class ConsoleProgress:
    """Print a one-line status every ``every`` epochs and when a model stops."""

    def __init__(self, every: int = 10, stream: TextIO | None = None) -> None:
        self.every = max(1, int(every))
        self.stream = stream if stream is not None else sys.stdout

    def on_progress(self, info: ProgressInfo) -> None:
        if not info.stopped and info.epoch % self.every:
            return
        parts = [
            f"{info.model_name}",
            f"attempt {info.attempt}/{info.max_attempts}",
            f"epoch {info.epoch}/{info.max_epochs}",
            f"cost {info.cost:.6g}",
        ]
        for key in ("accuracy", "binary_accuracy", "rmse"):
            if key in info.train_metrics:
                parts.append(f"train {key} {float(info.train_metrics[key]):.4f}")
            if key in info.validation_metrics:
                parts.append(f"val {key} {float(info.validation_metrics[key]):.4f}")
        if info.stopped:
            parts.append(f"best {info.best_attempt}:{info.best_epoch}")
        print(" | ".join(parts), file=self.stream)


__all__ = ["ConsoleProgress", "CsvSink", "JsonlSink"]
