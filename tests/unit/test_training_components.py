import numpy as np
import pytest

from easymlp.core.errors import ConfigurationError, DataError, NumericInstabilityError
from easymlp.core.optimizers import AdamConfig, RPropConfig, SGDConfig
from easymlp.core.regularization import (
    DropoutConfig,
    NormConsConfig,
    RegL1Config,
    RegL2Config,
    apply_norm_constraint,
    penalty_gradient,
)
from easymlp.core.throttle import LearningThrottleValveConfig, ThrottleValve
from easymlp.data import SampleDataset
from easymlp.training.config import (
    CompositeModelConfig,
    CrossValModelConfig,
    HiddenLayerConfig,
    NetworkModelConfig,
    StackingModelConfig,
    config_from_dict,
    config_to_dict,
)
from easymlp.training.engine import MLPEngine
from easymlp.training.trainer import Trainer


def _dataset(n, n_out=1, binary=False, seed=0):
    rng = np.random.default_rng(seed)
    inputs = rng.normal(size=(n, 3))
    if binary:
        outputs = (rng.random((n, n_out)) > 0.5).astype(np.float64)
    else:
        outputs = rng.normal(size=(n, n_out))
    return SampleDataset.from_arrays(inputs, outputs)


def _trainer(config, dataset, task="regression", seed=0, max_workers=1):
    names = [f"y{i}" for i in range(dataset.output_length)]
    engine = MLPEngine(task, dataset.input_length, names, config.hidden_layers)
    return Trainer(
        config, engine, dataset, np.random.default_rng(seed), max_workers=max_workers
    )


def _categorical_dataset(n, seed=0):
    rng = np.random.default_rng(seed)
    outputs = np.eye(3)[np.arange(n) % 3]
    return SampleDataset.from_arrays(rng.normal(size=(n, 3)), outputs)


def _first_update(trainer):
    """Run one full-batch epoch and return what the optimizer received."""

    captured = {}

    def record(permeability, cost, switches, grads, weights):
        captured.update(cost=cost, grads=grads.copy(), weights=weights.copy())

    trainer.optimizer.update = record
    trainer.epoch()
    return captured


def test_throttle_valve_curve():
    assert ThrottleValve().permeability(5, 10) == 1.0
    linear = ThrottleValve(LearningThrottleValveConfig(min_permeability=0.1))
    assert linear.permeability(0, 10) == 1.0
    assert linear.permeability(5, 10) == pytest.approx(0.55)
    assert linear.permeability(10, 10) == pytest.approx(0.1)

    early = ThrottleValve(
        LearningThrottleValveConfig(min_permeability=0.2, last_throttling_epoch_ratio=0.5)
    )
    assert early.permeability(5, 10) == pytest.approx(0.2)
    assert early.permeability(9, 10) == pytest.approx(0.2)

    steep = ThrottleValve(LearningThrottleValveConfig(min_permeability=0.1, throttling_slope=4.0))
    curve = [steep.permeability(e, 20) for e in range(21)]
    assert all(a >= b for a, b in zip(curve, curve[1:]))
    assert curve[5] < linear.permeability(5, 20)


def test_throttle_config_validation():
    with pytest.raises(ConfigurationError):
        LearningThrottleValveConfig(min_permeability=0.0)
    with pytest.raises(ConfigurationError):
        LearningThrottleValveConfig(throttling_slope=-1.0)


def test_regularization_helpers():
    weights = np.array([[3.0, 4.0], [0.3, 0.4]])
    biases = np.array([1.0, 1.0])
    apply_norm_constraint(weights, biases, NormConsConfig(min=1.0, max=2.0))
    assert np.allclose(np.linalg.norm(weights, axis=1), [2.0, 1.0])
    assert np.array_equal(biases, [1.0, 1.0])

    grad = penalty_gradient(np.array([-2.0, 0.0, 3.0]), 0.1, 0.5)
    assert np.allclose(grad, [-0.1 - 1.0, 0.0, 0.1 + 1.5])

    with pytest.raises(ConfigurationError):
        DropoutConfig(p=0.2)
    with pytest.raises(ConfigurationError):
        DropoutConfig(p=0.0, mode="bernoulli")
    with pytest.raises(ConfigurationError):
        NormConsConfig(min=2.0, max=1.0)
    with pytest.raises(ConfigurationError):
        RegL2Config(strength=-1.0)


def test_network_config_validation():
    with pytest.raises(ConfigurationError):
        HiddenLayerConfig(neurons=0)
    with pytest.raises(ConfigurationError):
        HiddenLayerConfig(neurons=4, activation="softmax")
    with pytest.raises(ConfigurationError):
        NetworkModelConfig(optimizer=RPropConfig(), batch_size=8)
    with pytest.raises(ConfigurationError):
        NetworkModelConfig(
            optimizer=RPropConfig(),
            hidden_layers=(HiddenLayerConfig(4, dropout=DropoutConfig(0.2, "bernoulli")),),
        )
    with pytest.raises(ConfigurationError):
        NetworkModelConfig(optimizer=AdamConfig(), grad_clip_norm=1.0, grad_clip_val=1.0)
    with pytest.raises(ConfigurationError):
        NetworkModelConfig(batch_size="half")
    with pytest.raises(ConfigurationError):
        CrossValModelConfig(fold_data_ratio=0.75)
    with pytest.raises(ConfigurationError):
        StackingModelConfig(stack=())
    with pytest.raises(ConfigurationError):
        CompositeModelConfig(models=())


def test_config_mapping_round_trip():
    payload = {
        "type": "stacking",
        "fold_data_ratio": 0.25,
        "route_input": True,
        "stack": [
            {
                "epochs": 5,
                "optimizer": {"name": "adam", "lr": 0.01},
                "hidden_layers": [{"neurons": 3, "activation": "tanh", "reg_l2": {"strength": 0.1}}],
                "batch_size": 4,
            }
        ],
        "meta_learner": {"type": "crossval", "network": {"epochs": 3}},
    }
    config = config_from_dict(payload)
    assert isinstance(config, StackingModelConfig)
    assert config.stack[0].hidden_layers[0].reg_l2.strength == 0.1
    assert isinstance(config.meta_learner, CrossValModelConfig)
    assert config_from_dict(config_to_dict(config)) == config

    with pytest.raises(ConfigurationError):
        config_from_dict({"type": "network", "learning_rate": 0.1})
    with pytest.raises(ConfigurationError):
        config_from_dict({"type": "forest"})


def test_engine_arena_views_share_memory():
    engine = MLPEngine("binary", 3, ["a"], (HiddenLayerConfig(4, "tanh"),))
    assert engine.num_weights == 3 * 4 + 4 + 4 * 1 + 1
    engine.layer_weights(0)[0, 0] = 7.0
    assert engine.weights[0] == 7.0
    engine.layer_biases(1)[...] = -1.0
    assert engine.weights[-1] == -1.0
    flat = np.arange(engine.num_weights, dtype=np.float64)
    assert engine.layer_weights(1, flat).shape == (1, 4)
    assert engine.layer_biases(0, flat)[0] == 12.0


def test_engine_forward_shapes_and_errors():
    engine = MLPEngine("categorical", 2, ["a", "b", "c"], (HiddenLayerConfig(5),))
    engine.randomize_weights(np.random.default_rng(0))
    out = engine.forward(np.ones((4, 2)))
    assert out.shape == (4, 3)
    assert np.allclose(out.sum(axis=1), 1.0)
    assert np.allclose(engine.compute([1.0, 1.0]), out[0])
    with pytest.raises(DataError):
        engine.forward(np.ones((4, 3)))
    with pytest.raises(ConfigurationError):
        MLPEngine("categorical", 2, ["only"])
    with pytest.raises(ConfigurationError):
        MLPEngine("ranking", 2, ["a"])


def test_engine_checkpoint_round_trip(tmp_path):
    engine = MLPEngine("regression", 2, ["y"], (HiddenLayerConfig(3, "elu"),))
    engine.randomize_weights(np.random.default_rng(4))
    path = engine.save_checkpoint(tmp_path / "engine.npz")
    restored = MLPEngine.load_checkpoint(path)
    x = np.random.default_rng(1).normal(size=(5, 2))
    assert np.array_equal(restored.forward(x), engine.forward(x))
    assert restored.topology() == engine.topology()

    other = MLPEngine("regression", 2, ["y"])
    with pytest.raises(ConfigurationError):
        other.load_state_dict(engine.state_dict())


@pytest.mark.parametrize(
    "optimizer, batch_size, n, expected",
    [
        (RPropConfig(), "auto", 50, 50),
        (AdamConfig(), "auto", 200, 32),
        (AdamConfig(), "auto", 10, 10),
        (AdamConfig(), "full", 200, 200),
        (AdamConfig(), 16, 200, 16),
        (AdamConfig(), 64, 20, 20),
        (SGDConfig(), "auto", 50, 1),
    ],
)
def test_trainer_batch_size(optimizer, batch_size, n, expected):
    config = NetworkModelConfig(optimizer=optimizer, batch_size=batch_size, epochs=1)
    assert _trainer(config, _dataset(n)).batch_size == expected


def test_trainer_class_imbalance_weights():
    inputs = np.arange(10.0).reshape(-1, 1)
    outputs = np.array([1.0, 1.0, 1.0] + [0.0] * 7)
    dataset = SampleDataset.from_arrays(inputs, outputs)
    config = NetworkModelConfig(optimizer=AdamConfig(), epochs=1)
    trainer = _trainer(config, dataset, task="binary")
    negative, positive = trainer._imbalance[:, 0]
    assert positive > negative
    assert negative + positive == pytest.approx(2.0)

    balanced_off = NetworkModelConfig(optimizer=AdamConfig(), epochs=1, class_balanced_loss=False)
    assert _trainer(balanced_off, dataset, task="binary")._imbalance is None


def test_trainer_runs_every_attempt_epoch():
    config = NetworkModelConfig(
        optimizer=AdamConfig(lr=0.01), attempts=2, epochs=3, hidden_layers=(HiddenLayerConfig(4),)
    )
    trainer = _trainer(config, _dataset(20))
    seen = []
    while trainer.epoch():
        seen.append((trainer.attempt, trainer.attempt_epoch))
        assert trainer.epoch_err_stat.num_samples == 20
        assert trainer.epoch_cost > 0.0
    assert seen == [(1, 1), (1, 2), (1, 3), (2, 1), (2, 2), (2, 3)]
    assert not trainer.next_attempt()


def test_trainer_norm_constraint_and_clipping():
    config = NetworkModelConfig(
        optimizer=AdamConfig(lr=0.5),
        epochs=5,
        grad_clip_val=0.01,
        hidden_layers=(HiddenLayerConfig(6, norm_cons=NormConsConfig(max=0.5)),),
    )
    trainer = _trainer(config, _dataset(30))
    while trainer.epoch():
        pass
    norms = np.linalg.norm(trainer.engine.layer_weights(0, trainer.weights), axis=1)
    assert np.all(norms <= 0.5 + 1e-12)


def test_trainer_with_dropout_and_regularization_is_reproducible():
    config = NetworkModelConfig(
        optimizer=AdamConfig(lr=0.01),
        epochs=4,
        batch_size=8,
        hidden_layers=(
            HiddenLayerConfig(
                5,
                "tanh",
                dropout=DropoutConfig(0.2, "bernoulli"),
                reg_l2=RegL2Config(strength=0.1, biases=True),
            ),
        ),
    )
    runs = []
    for _ in range(2):
        trainer = _trainer(config, _dataset(24, binary=True), task="binary", seed=9)
        while trainer.epoch():
            pass
        runs.append(trainer.weights.copy())
    assert trainer.dropout_active
    assert np.array_equal(runs[0], runs[1])


def _loss_sum(trainer, flat):
    engine = trainer.engine
    engine.set_weights(flat)
    computed = engine.forward(trainer._inputs)
    return float(np.sum(engine.loss(trainer._outputs, computed)))


@pytest.mark.parametrize(
    "task, dataset, divisor",
    [
        ("regression", _dataset(12, n_out=2), 24.0),
        ("binary", _dataset(12, binary=True), 12.0),
        ("categorical", _categorical_dataset(12), 12.0),
    ],
)
def test_backprop_matches_central_differences(task, dataset, divisor):
    strength = 0.3
    config = NetworkModelConfig(
        optimizer=AdamConfig(),
        epochs=1,
        batch_size="full",
        class_balanced_loss=False,
        hidden_layers=(
            HiddenLayerConfig(4, "tanh", reg_l2=RegL2Config(strength=strength, biases=True)),
        ),
    )
    trainer = _trainer(config, dataset, task=task, seed=5)
    captured = _first_update(trainer)
    n = trainer.sample_count
    engine = trainer.engine
    hidden_end = engine.layers[0].end

    def objective(flat):
        penalty = 0.5 * strength * float(np.sum(np.square(flat[:hidden_end])))
        return (_loss_sum(trainer, flat) + penalty) / n

    base = captured["weights"]
    numeric = np.zeros_like(base)
    step = 1e-6
    for idx in range(base.size):
        plus = base.copy()
        minus = base.copy()
        plus[idx] += step
        minus[idx] -= step
        numeric[idx] = (objective(plus) - objective(minus)) / (2.0 * step)

    assert np.allclose(captured["grads"], numeric, rtol=1e-5, atol=1e-8)
    assert captured["cost"] == pytest.approx(_loss_sum(trainer, base) / divisor)


def test_l1_penalty_reaches_hidden_weight_gradients():
    dataset = _dataset(10)

    def gradients(strength):
        config = NetworkModelConfig(
            optimizer=AdamConfig(),
            epochs=1,
            batch_size="full",
            hidden_layers=(HiddenLayerConfig(3, "tanh", reg_l1=RegL1Config(strength=strength)),),
        )
        return _first_update(_trainer(config, dataset, seed=2))

    plain = gradients(0.0)
    penalized = gradients(0.4)
    assert np.array_equal(plain["weights"], penalized["weights"])
    layer = MLPEngine("regression", 3, ["y0"], (HiddenLayerConfig(3, "tanh"),)).layers[0]
    delta = penalized["grads"] - plain["grads"]
    hidden = slice(layer.weights_start, layer.biases_start)
    expected = 0.4 * np.sign(plain["weights"][hidden]) / dataset.count
    assert np.allclose(delta[hidden], expected)
    assert np.allclose(delta[layer.biases_start :], 0.0)


def test_exploding_weights_raise_numeric_instability():
    config = NetworkModelConfig(
        optimizer=SGDConfig(lr=1e9),
        epochs=5,
        batch_size="full",
        hidden_layers=(HiddenLayerConfig(4, "tanh"),),
    )
    trainer = _trainer(config, _dataset(20))
    with pytest.raises(NumericInstabilityError):
        while trainer.epoch():
            pass


def test_filter_workers_do_not_change_training():
    config = NetworkModelConfig(
        optimizer=AdamConfig(lr=0.01), epochs=3, hidden_layers=(HiddenLayerConfig(4),)
    )
    dataset = _dataset(30, n_out=2)
    serial = _trainer(config, dataset, seed=4)
    threaded = _trainer(config, dataset, seed=4, max_workers=3)
    assert np.array_equal(serial.std_dataset.input_matrix(), threaded.std_dataset.input_matrix())
    while serial.epoch() and threaded.epoch():
        pass
    assert np.array_equal(serial.weights, threaded.weights)


def test_batch_size_must_be_a_whole_number():
    for bad in (2.5, 0, -3, True, "half"):
        with pytest.raises(ConfigurationError):
            NetworkModelConfig(optimizer=AdamConfig(), batch_size=bad)
    config = NetworkModelConfig(optimizer=AdamConfig(), batch_size=np.int64(8))
    assert config.batch_size == 8 and type(config.batch_size) is int
