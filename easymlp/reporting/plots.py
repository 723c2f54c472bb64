"""Headless-safe plotting adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Tuple

from ..core.types import ProgressInfo


class PlotAdapter:
    """Collect per-model epoch costs and optionally plot them with matplotlib."""

    def __init__(self, run_dir: str | Path, enable_plots: bool = False):
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self._history: Dict[str, List[Tuple[int, float]]] = {}
        self._epochs: Dict[str, int] = {}
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    def on_progress(self, info: ProgressInfo) -> None:
        if not self.enable_plots:
            return
        # Epochs run on across attempts.
        step = self._epochs.get(info.model_name, 0) + 1
        self._epochs[info.model_name] = step
        self._history.setdefault(info.model_name, []).append((step, float(info.cost)))

    def close(self) -> Path | None:
        if not self.enable_plots or not self._history:
            return None
        import matplotlib

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # imported lazily for headless safety

        fig, ax = plt.subplots()
        for name, points in sorted(self._history.items()):
            epochs, costs = zip(*points)
            ax.plot(epochs, costs, label=name)
        ax.set_xlabel("Epoch")
        ax.set_ylabel("Cost")
        ax.set_yscale("log")
        ax.set_title("Training Curve")
        if len(self._history) <= 10:
            ax.legend(fontsize="small")
        plot_path = self.run_dir / "cost.png"
        fig.savefig(plot_path)
        plt.close(fig)
        return plot_path

    __call__ = on_progress


__all__ = ["PlotAdapter"]
