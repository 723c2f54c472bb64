import numpy as np
import pytest

from easymlp.core.errors import ConfigurationError
from easymlp.core.optimizers import AdamConfig, RPropConfig
from easymlp.data import get_dataset
from easymlp.models import CompositeModel, CrossValModel, NetworkModel, StackingModel, build_model
from easymlp.training.config import (
    CompositeModelConfig,
    CrossValModelConfig,
    HiddenLayerConfig,
    NetworkModelConfig,
    StackingModelConfig,
)


def _net(epochs=15, neurons=6, activation="tanh", optimizer=None, batch_size=16):
    return NetworkModelConfig(
        epochs=epochs,
        optimizer=optimizer or AdamConfig(lr=0.02),
        hidden_layers=(HiddenLayerConfig(neurons, activation),),
        batch_size=batch_size,
    )


def _build(config, spec, name, **kwargs):
    return build_model(
        config, name, spec.task_type, spec.output_feature_names, spec.training, **kwargs
    )


@pytest.fixture(scope="module")
def sine():
    return get_dataset("sine", n_points=80, test_split=0.2, seed=0)


@pytest.fixture(scope="module")
def blobs():
    return get_dataset("blobs", n_per_class=20, n_classes=3, seed=2)


def test_crossval_members_per_fold(sine):
    config = CrossValModelConfig(
        network=_net(optimizer=RPropConfig(), batch_size="auto"), fold_data_ratio=0.25
    )
    model = _build(config, sine, "sine", seed=5)
    assert isinstance(model, CrossValModel)
    assert [m.name for m in model.members] == [f"sine.F{i}-MLP" for i in range(1, 5)]
    assert all(m.validation_err_stat is not None for m in model.members)
    assert model.ready
    x = sine.testing.input_matrix()
    outputs = model.compute_batch(x)
    assert outputs.shape == (sine.testing.count, 1)
    assert np.all(np.isfinite(outputs))
    assert len(model.summary()["members"]) == 4


def test_crossval_is_independent_of_worker_count(sine):
    config = CrossValModelConfig(network=_net(epochs=8), fold_data_ratio=0.25)
    serial = _build(config, sine, "sine", seed=3, max_workers=1)
    threaded = _build(config, sine, "sine", seed=3, max_workers=2)
    x = sine.testing.input_matrix()
    assert np.array_equal(serial.compute_batch(x), threaded.compute_batch(x))


def test_crossval_fold_labels_are_padded(sine):
    config = CrossValModelConfig(network=_net(epochs=2), fold_data_ratio=0.1)
    model = _build(config, sine, "wide", seed=0)
    assert len(model.members) == 11
    assert model.members[0].name == "wide.F01-MLP"
    assert model.members[-1].name == "wide.F11-MLP"


def test_stacking_on_blobs(blobs):
    config = StackingModelConfig(
        stack=(_net(neurons=4), _net(neurons=6, activation="relu")),
        meta_learner=_net(epochs=10, neurons=4),
        fold_data_ratio=0.25,
    )
    model = _build(config, blobs, "blobs", seed=1)
    assert isinstance(model, StackingModel)
    assert [m.name for m in model.stack] == ["blobs.Strong1-MLP", "blobs.Strong2-MLP"]
    assert model.meta_learner.name == "blobs.Meta-Learner-network"
    assert model.meta_learner.engine.input_count == 6
    outputs = model.compute_batch(blobs.testing.input_matrix())
    assert outputs.shape == (blobs.testing.count, 3)
    assert np.allclose(outputs.sum(axis=1), 1.0)
    assert model.confidence_metrics == model.meta_learner.confidence_metrics


def test_stacking_routes_original_inputs(blobs):
    names = []
    config = StackingModelConfig(
        stack=(_net(epochs=4, neurons=3), _net(epochs=4, neurons=3)),
        meta_learner=_net(epochs=4, neurons=3),
        fold_data_ratio=0.5,
        route_input=True,
    )
    model = _build(
        config, blobs, "routed", seed=2, progress=[lambda info: names.append(info.model_name)]
    )
    assert model.meta_learner.engine.input_count == 2 + 2 * 3
    assert "routed.F1-Weak1-MLP" in names
    assert "routed.F2-Weak2-MLP" in names
    assert "routed.Meta-Learner-network" in names


def test_stacking_with_crossval_meta_learner(blobs):
    config = StackingModelConfig(
        stack=(_net(epochs=4, neurons=3),),
        meta_learner=CrossValModelConfig(network=_net(epochs=4, neurons=3), fold_data_ratio=0.5),
        fold_data_ratio=0.5,
    )
    model = _build(config, blobs, "deep", seed=0)
    assert isinstance(model.meta_learner, CrossValModel)
    assert [m.name for m in model.meta_learner.members] == [
        "deep.Meta-Learner-crossval.F1-MLP",
        "deep.Meta-Learner-crossval.F2-MLP",
    ]


def test_composite_on_blobs(blobs):
    config = CompositeModelConfig(
        models=(
            _net(neurons=5),
            CrossValModelConfig(network=_net(epochs=6, neurons=4), fold_data_ratio=0.5),
        )
    )
    model = _build(config, blobs, "combo", seed=8)
    assert isinstance(model, CompositeModel)
    assert [m.name for m in model.members] == ["combo.M1-network", "combo.M2-crossval"]
    assert isinstance(model.members[0], NetworkModel)
    outputs = model.compute_batch(blobs.testing.input_matrix())
    assert np.allclose(outputs.sum(axis=1), 1.0)
    result = model.test(blobs.testing)
    assert 0.0 <= result.err_stat.summary()["accuracy"] <= 1.0


def test_aggregate_weights_member_outputs():
    model = CompositeModel("manual", "regression", ["a", "b"])
    outputs = [np.array([[1.0, 10.0]]), np.array([[3.0, 20.0]])]
    weights = np.array([[1.0, 3.0], [0.0, 0.0]])
    mixed = model.aggregate(outputs, weights)
    assert np.allclose(mixed, [[2.5, 15.0]])

    categorical = CompositeModel("manual", "categorical", ["a", "b"])
    rows = [np.array([[0.6, 0.4]]), np.array([[0.2, 0.8]])]
    mixed = categorical.aggregate(rows, np.array([[1.0, 1.0], [3.0, 1.0]]))
    assert np.allclose(mixed.sum(axis=1), 1.0)


def test_builders_reject_mismatched_configs(blobs):
    with pytest.raises(ConfigurationError):
        CrossValModel.build(
            _net(), "x", blobs.task_type, blobs.output_feature_names, blobs.training
        )
    with pytest.raises(TypeError):
        _build({"type": "network"}, blobs, "x")
    with pytest.raises(ConfigurationError):
        CompositeModel("empty", "regression", ["y"]).finalize()
