import pickle

import numpy as np
import pytest

from easymlp.core.errors import ConfigurationError, DataError
from easymlp.core.optimizers import AdamConfig
from easymlp.core.types import ProgressInfo
from easymlp.data import get_dataset
from easymlp.models import NetworkModel, load_model, save_model
from easymlp.training.config import HiddenLayerConfig, NetworkModelConfig

XOR_INPUTS = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])


def _xor_config(**overrides):
    options = dict(
        attempts=5,
        epochs=500,
        optimizer=AdamConfig(lr=0.05),
        hidden_layers=(HiddenLayerConfig(8, "tanh"),),
        batch_size="full",
    )
    options.update(overrides)
    return NetworkModelConfig(**options)


def _build_xor(seed=3, progress=None, **overrides):
    spec = get_dataset("xor")
    return NetworkModel.build(
        _xor_config(**overrides),
        "xor",
        spec.task_type,
        spec.output_feature_names,
        spec.training,
        seed=seed,
        progress=progress,
    )


def test_network_learns_xor():
    model = _build_xor()
    assert model.ready
    assert model.training_err_stat.data.binary_accuracy == 1.0
    decisions = (model.compute_batch(XOR_INPUTS)[:, 0] >= 0.5).astype(int)
    assert decisions.tolist() == [0, 1, 1, 0]
    result = model.test(get_dataset("xor").training)
    assert result.err_stat.summary()["binary_accuracy"] == 1.0
    assert result.computed.shape == (4, 1)


def test_same_seed_builds_identical_networks():
    first = _build_xor(seed=11, attempts=1, epochs=30)
    second = _build_xor(seed=11, attempts=1, epochs=30)
    other = _build_xor(seed=12, attempts=1, epochs=30)
    assert np.array_equal(first.engine.weights, second.engine.weights)
    assert not np.array_equal(first.engine.weights, other.engine.weights)


def test_saved_model_computes_identically(tmp_path):
    model = _build_xor(attempts=1, epochs=50)
    path = save_model(model, tmp_path / "nested" / "xor.pkl")
    restored = load_model(path)
    assert isinstance(restored, NetworkModel)
    assert np.array_equal(restored.compute_batch(XOR_INPUTS), model.compute_batch(XOR_INPUTS))
    assert restored.name == model.name
    assert restored.engine.topology() == model.engine.topology()


def test_load_model_rejects_foreign_pickles(tmp_path):
    path = tmp_path / "other.pkl"
    path.write_bytes(pickle.dumps({"not": "a model"}))
    with pytest.raises(TypeError):
        load_model(path)


def test_compute_validates_input_shape():
    model = _build_xor(attempts=1, epochs=5)
    assert model.compute([1.0, 0.0]).shape == (1,)
    with pytest.raises(DataError):
        model.compute_batch(np.ones((2, 3)))
    with pytest.raises(DataError):
        model.compute(np.ones((2, 2)))


def test_progress_callback_styles():
    infos = []

    class EpochRecorder:
        def __init__(self):
            self.rows = []

        def on_epoch(self, epoch, metrics):
            self.rows.append((epoch, metrics))

    recorder = EpochRecorder()
    _build_xor(attempts=2, epochs=4, progress=[infos.append, recorder])

    assert infos and all(isinstance(info, ProgressInfo) for info in infos)
    assert len(recorder.rows) == len(infos)
    first = infos[0]
    assert first.model_name == "xor"
    assert (first.attempt, first.epoch, first.max_attempts, first.max_epochs) == (1, 1, 2, 4)
    assert first.validation_metrics == {}
    assert "train_binary_accuracy" in recorder.rows[0][1]
    first_attempt = [info.epoch for info in infos if info.attempt == 1]
    assert first_attempt == list(range(1, len(first_attempt) + 1))
    assert all(info.best_attempt >= 1 for info in infos)


def test_validation_is_engaged_when_given():
    spec = get_dataset("sine", n_points=60, test_split=0.25)
    config = NetworkModelConfig(
        epochs=20, optimizer=AdamConfig(lr=0.01), hidden_layers=(HiddenLayerConfig(6, "tanh"),)
    )
    infos = []
    model = NetworkModel.build(
        config,
        "sine",
        spec.task_type,
        spec.output_feature_names,
        spec.training,
        spec.testing,
        seed=0,
        progress=[infos.append],
    )
    assert model.validation_err_stat is not None
    assert "rmse" in infos[-1].validation_metrics
    assert model.summary()["validation"]["rmse"] >= 0.0

    with pytest.raises(ConfigurationError):
        NetworkModel.build(
            config,
            "sine",
            spec.task_type,
            spec.output_feature_names,
            spec.training,
            engage_validation=True,
        )
