"""Learning throttle valve: the per-epoch permeability schedule."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigurationError


@dataclass(frozen=True)
class LearningThrottleValveConfig:
    """Shape of the permeability curve.

    ``min_permeability`` is the floor, reached at
    ``last_throttling_epoch_ratio * max_epoch``. ``throttling_slope`` bends the
    curve: 0 gives a linear decay, larger values an increasingly steep
    softsign-shaped drop early on.
    """

    min_permeability: float = 1.0
    throttling_slope: float = 0.0
    last_throttling_epoch_ratio: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 < self.min_permeability <= 1.0:
            raise ConfigurationError("min_permeability must be in (0, 1]")
        if self.throttling_slope < 0.0:
            raise ConfigurationError("throttling_slope must be >= 0")
        if not 0.0 < self.last_throttling_epoch_ratio <= 1.0:
            raise ConfigurationError("last_throttling_epoch_ratio must be in (0, 1]")

    @property
    def active(self) -> bool:
        return self.min_permeability < 1.0


class ThrottleValve:
    """Evaluate the permeability curve of a :class:`LearningThrottleValveConfig`."""

    def __init__(self, config: LearningThrottleValveConfig | None = None) -> None:
        self.config = config or LearningThrottleValveConfig()
        slope = self.config.throttling_slope
        if slope < 1e-15 or slope > 1e15:
            self._trans_max = 1.0
        else:
            self._trans_max = self._transform(1.0)

    def _transform(self, x: float) -> float:
        s = self.config.throttling_slope
        if s <= 0.0:
            return x
        return s * x / (1.0 + s * x)

    def permeability(self, epoch: int, max_epoch: int) -> float:
        """Return the permeability in ``(0, 1]`` for zero-based ``epoch``."""

        cfg = self.config
        if epoch <= 0 or not cfg.active:
            return 1.0
        last = cfg.last_throttling_epoch_ratio * max_epoch
        if epoch >= last:
            return cfg.min_permeability
        x = epoch / last
        ratio = self._transform(x) / self._trans_max
        return 1.0 + min(1.0, ratio) * (cfg.min_permeability - 1.0)


__all__ = ["LearningThrottleValveConfig", "ThrottleValve"]
