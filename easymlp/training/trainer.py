"""Mini-batch backpropagation trainer for :class:`MLPEngine` networks."""

from __future__ import annotations

from typing import List

import numpy as np

from ..core.activations import DROPOUT_NONE
from ..core.activations import REGISTRY as ACTIVATIONS
from ..core.errors import ConfigurationError, NumericInstabilityError
from ..core.optimizers import Optimizer, RPropConfig, SGDConfig, create_optimizer
from ..core.regularization import NormConsConfig, apply_norm_constraint, penalty_gradient
from ..core.throttle import ThrottleValve
from ..core.types import BIN_DECISION_BORDER, CATEGORICAL, REGRESSION, Array, round_half_away
from ..data.dataset import SampleDataset, reverse_filters
from .config import AUTO_BATCH, FULL_BATCH, NetworkModelConfig
from .engine import MLPEngine
from .metrics import ModelErrStat

MAX_WEIGHT_MAGNITUDE = 1e10
SAMPLES_PER_BATCH_INCREMENT = 100
MIN_AUTO_BATCH = 32
MAX_AUTO_BATCH = 128


def _class_weight(beta: float, count: float) -> float:
    # A class without samples never receives a gradient; keep its weight finite.
    return (1.0 - beta) / (1.0 - beta ** max(count, 1.0))


class Trainer:
    """Run training attempts of a network over one training dataset.

    The trainer owns the standardized copy of the data, the flat weight buffer
    being optimized and the optimizer state. Call :meth:`epoch` repeatedly; it
    moves to the next attempt automatically and returns ``False`` once every
    attempt is exhausted.
    """

    def __init__(
        self,
        config: NetworkModelConfig,
        engine: MLPEngine,
        training: SampleDataset,
        rng: np.random.Generator,
        *,
        max_workers: int | None = 1,
    ) -> None:
        if len(config.hidden_layers) != len(engine.layers) - 1:
            raise ConfigurationError("Engine topology does not match the network configuration")
        self.config = config
        self.engine = engine
        self.rng = rng
        self.max_attempts = config.attempts
        self.max_attempt_epochs = config.epochs

        self.original = training
        self.std_dataset, self.input_filters, self.output_filters = training.create_standardized(
            engine.task_type, max_workers=max_workers
        )
        self._inputs = self.std_dataset.input_matrix()
        self._outputs = self.std_dataset.output_matrix()
        self._original_outputs = training.output_matrix()
        self._order = np.arange(self.std_dataset.count)
        self.weights = np.zeros(engine.num_weights, dtype=np.float64)

        self._imbalance = None
        if engine.task_type != REGRESSION and config.class_balanced_loss:
            self._imbalance = self._init_imbalances()

        self._throttle = ThrottleValve(config.throttle_valve) if config.throttle_valve.active else None
        self._init_dropout()
        self._init_regularization()
        self.optimizer: Optimizer = create_optimizer(engine.num_weights, config.optimizer)
        self.batch_size = self._init_batch_size()

        self.attempt = 0
        self.attempt_epoch = 0
        self.epoch_cost = 0.0
        self.epoch_err_stat: ModelErrStat | None = None
        self.next_attempt()

    # ------------------------------------------------------------------
    # Setup

    @property
    def sample_count(self) -> int:
        return self.std_dataset.count

    def _init_imbalances(self) -> Array:
        n = float(self.sample_count)
        beta = (n - 1.0) / n
        coeffs = np.ones((2, self.engine.output_count), dtype=np.float64)
        if self.engine.task_type == CATEGORICAL:
            weights = np.array(
                [_class_weight(beta, flt.stat.nonzero_count) for flt in self.output_filters]
            )
            weights = weights / weights.sum() * self.engine.output_count
            coeffs[0] = weights
            coeffs[1] = weights
        else:
            for idx, flt in enumerate(self.output_filters):
                pair = np.array(
                    [
                        _class_weight(beta, flt.stat.count - flt.stat.nonzero_count),
                        _class_weight(beta, flt.stat.nonzero_count),
                    ]
                )
                coeffs[:, idx] = pair / pair.sum() * 2.0
        return coeffs

    def _init_dropout(self) -> None:
        layers = self.config.hidden_layers
        self._input_activation = ACTIVATIONS.get("linear")
        self._dropout = [self.config.input_options.dropout] + [layer.dropout for layer in layers]
        self.dropout_active = any(cfg.mode != DROPOUT_NONE for cfg in self._dropout)

    def _init_regularization(self) -> None:
        n = float(self.sample_count)
        l1w: List[float] = []
        l1b: List[float] = []
        l2w: List[float] = []
        l2b: List[float] = []
        norms: List[NormConsConfig] = []
        out = self.config.output_options
        for layer in self.engine.layers:
            if layer.output_layer:
                reg_l1, reg_l2, norm = out.reg_l1, out.reg_l2, out.norm_cons
            else:
                cfg = self.config.hidden_layers[len(l1w)]
                reg_l1, reg_l2, norm = cfg.reg_l1, cfg.reg_l2, cfg.norm_cons
            l1w.append(reg_l1.strength / n)
            l1b.append((reg_l1.strength if reg_l1.biases else 0.0) / n)
            l2w.append(reg_l2.strength / n)
            l2b.append((reg_l2.strength if reg_l2.biases else 0.0) / n)
            norms.append(norm)
        self._l1w, self._l1b, self._l2w, self._l2b = l1w, l1b, l2w, l2b
        self._norm_cons = norms

    def _init_batch_size(self) -> int:
        n = self.sample_count
        configured = self.config.batch_size
        if configured == FULL_BATCH or n == 1 or isinstance(self.config.optimizer, RPropConfig):
            size = n
        elif configured == AUTO_BATCH:
            if isinstance(self.config.optimizer, SGDConfig):
                size = 1
            else:
                size = round_half_away(n / SAMPLES_PER_BATCH_INCREMENT)
                size = min(MAX_AUTO_BATCH, max(MIN_AUTO_BATCH, size))
        else:
            size = int(configured)
        return min(size, n)

    # ------------------------------------------------------------------
    # Attempts and epochs

    def next_attempt(self) -> bool:
        """Start a fresh attempt; ``False`` when the attempt budget is spent."""

        if self.attempt >= self.max_attempts:
            return False
        self.epoch_err_stat = None
        self.attempt += 1
        self.attempt_epoch = 0
        self.engine.randomize_weights(self.rng)
        self.weights[...] = self.engine.weights
        self.optimizer.reset()
        return True

    def epoch(self) -> bool:
        """Run one epoch; returns ``False`` when no further epoch is possible."""

        if self.attempt_epoch == self.max_attempt_epochs and not self.next_attempt():
            return False
        self.attempt_epoch += 1
        self.optimizer.new_epoch(self.attempt_epoch, self.max_attempt_epochs)
        n = self.sample_count
        if self.batch_size != n:
            self.rng.shuffle(self._order)
        self.epoch_cost = 0.0
        for start in range(0, n, self.batch_size):
            self.epoch_cost += self._perform_batch(self._order[start : start + self.batch_size])
        self._finalize_epoch()
        return True

    def _finalize_epoch(self) -> None:
        self.engine.set_weights(self.weights)
        computed = reverse_filters(self.output_filters, self.engine.forward(self._inputs))
        self.epoch_err_stat = ModelErrStat.from_batches(
            self.engine.task_type,
            self.engine.output_feature_names,
            computed,
            self._original_outputs,
        )

    @property
    def permeability(self) -> float:
        if self._throttle is None:
            return 1.0
        return self._throttle.permeability(self.attempt_epoch - 1, self.max_attempt_epochs - 1)

    # ------------------------------------------------------------------
    # Batch processing

    def _forward(self, inputs: Array):
        """Forward pass with dropout; returns per-layer inputs, derivatives and switches."""

        engine = self.engine
        cfg = self._dropout[0]
        if cfg.mode != DROPOUT_NONE:
            x, _, switch = self._input_activation.dropout(cfg.mode, cfg.p, self.rng, inputs)
        else:
            x, switch = inputs, np.ones(inputs.shape, dtype=bool)
        layer_inputs = [x]
        switches = [switch]
        derivatives = []
        for idx, layer in enumerate(engine.layers):
            sums = x @ engine.layer_weights(idx, self.weights).T + engine.layer_biases(idx, self.weights)
            x, deriv = engine.activation(idx).compute_layer(sums)
            if not layer.output_layer and self._dropout[1 + idx].mode != DROPOUT_NONE:
                cfg = self._dropout[1 + idx]
                x, deriv, switch = engine.activation(idx).dropout(cfg.mode, cfg.p, self.rng, x, deriv)
            else:
                switch = np.ones(x.shape, dtype=bool)
            layer_inputs.append(x)
            derivatives.append(deriv)
            switches.append(switch)
        return layer_inputs, derivatives, switches

    def _perform_batch(self, rows: Array) -> float:
        engine = self.engine
        ideal = self._outputs[rows]
        layer_inputs, derivatives, switches = self._forward(self._inputs[rows])
        computed = layer_inputs[-1]
        loss_sum = float(np.sum(engine.loss(ideal, computed)))

        node_grads = engine.loss.z_gradient(derivatives[-1], ideal, computed)
        if self._imbalance is not None:
            node_grads = node_grads * np.where(
                ideal >= BIN_DECISION_BORDER, self._imbalance[1], self._imbalance[0]
            )

        grads = np.zeros_like(self.weights)
        for idx in range(len(engine.layers) - 1, -1, -1):
            if idx < len(engine.layers) - 1:
                upstream = node_grads @ engine.layer_weights(idx + 1, self.weights)
                node_grads = np.where(switches[idx + 1], derivatives[idx] * upstream, 0.0)
            neuron_on = switches[idx + 1].astype(np.float64)
            input_on = switches[idx]
            inputs = np.where(input_on, layer_inputs[idx], 0.0)
            weights = engine.layer_weights(idx, self.weights)
            biases = engine.layer_biases(idx, self.weights)
            w_grad = engine.layer_weights(idx, grads)
            b_grad = engine.layer_biases(idx, grads)
            w_grad[...] = node_grads.T @ inputs
            b_grad[...] = node_grads.sum(axis=0)
            if self._l1w[idx] > 0.0 or self._l2w[idx] > 0.0:
                # Penalty accrues once per sample where both ends of the weight were active.
                engaged = neuron_on.T @ input_on.astype(np.float64)
                w_grad += engaged * penalty_gradient(weights, self._l1w[idx], self._l2w[idx])
            if self._l1b[idx] > 0.0 or self._l2b[idx] > 0.0:
                engaged_b = neuron_on.sum(axis=0)
                b_grad += engaged_b * penalty_gradient(biases, self._l1b[idx], self._l2b[idx])

        grad_switches = grads != 0.0
        grads /= float(len(rows))
        if self.config.grad_clip_val > 0.0:
            np.clip(grads, -self.config.grad_clip_val, self.config.grad_clip_val, out=grads)
        if self.config.grad_clip_norm > 0.0:
            gnorm = float(np.linalg.norm(grads))
            if gnorm > self.config.grad_clip_norm:
                grads *= self.config.grad_clip_norm / gnorm

        if engine.task_type == CATEGORICAL:
            cost = loss_sum / self.sample_count
        else:
            cost = loss_sum / (self.sample_count * engine.output_count)
        self.optimizer.update(self.permeability, cost, grad_switches, grads, self.weights)

        magnitude = float(np.linalg.norm(self.weights))
        if np.isnan(magnitude) or magnitude >= MAX_WEIGHT_MAGNITUDE:
            raise NumericInstabilityError(
                f"Weight magnitude is NaN or exceeds {MAX_WEIGHT_MAGNITUDE:.3e} after the last "
                "update; decrease the learning rate"
            )
        for idx, norm_cfg in enumerate(self._norm_cons):
            apply_norm_constraint(
                engine.layer_weights(idx, self.weights),
                engine.layer_biases(idx, self.weights),
                norm_cfg,
            )
        return cost

    def __repr__(self) -> str:
        return (
            f"Trainer(attempt={self.attempt}/{self.max_attempts}, "
            f"epoch={self.attempt_epoch}/{self.max_attempt_epochs}, batch={self.batch_size})"
        )


__all__ = ["MAX_WEIGHT_MAGNITUDE", "Trainer"]
