import numpy as np
import pytest

from easymlp.core.errors import DataError
from easymlp.data import (
    BinFeatureFilter,
    RealFeatureFilter,
    Sample,
    SampleDataset,
    available_datasets,
    get_dataset,
    reverse_filters,
)
from easymlp.data.filters import INPUT_USE, OUTPUT_USE


def _ids(folds):
    return sorted(s.id for fold in folds for s in fold)


@pytest.mark.parametrize("centered", [True, False])
def test_real_filter_round_trip(centered):
    values = np.array([3.0, -1.5, 7.25, 0.0, 2.0])
    flt = RealFeatureFilter(INPUT_USE)
    flt.update_many(values)
    filtered = flt.apply_filter(values, centered)
    assert np.allclose(flt.apply_reverse(filtered, centered), values)
    assert filtered.min() == pytest.approx(-1.0)
    assert filtered.max() == pytest.approx(1.0)
    if not centered:
        assert flt.apply_filter(flt.stat.mean, False) == pytest.approx(0.0)


def test_real_filter_constant_feature():
    flt = RealFeatureFilter(INPUT_USE)
    flt.update_many([4.0, 4.0, 4.0])
    assert flt.apply_filter(4.0) == 1.0
    assert flt.apply_reverse(-0.3) == pytest.approx(4.0)


def test_filters_reject_non_finite_values():
    flt = RealFeatureFilter(INPUT_USE)
    flt.update_many([0.0, 1.0])
    with pytest.raises(DataError):
        flt.apply_filter(np.nan)
    with pytest.raises(DataError):
        flt.apply_reverse(np.inf)


def test_bin_filter_input_and_output_use():
    inputs = BinFeatureFilter(INPUT_USE)
    inputs.update_many([0.0, 1.0, 1.0])
    assert np.array_equal(inputs.apply_filter(np.array([0.0, 1.0])), [-1.0, 1.0])
    assert np.array_equal(inputs.apply_reverse(np.array([-0.2, 0.3])), [0.0, 1.0])
    assert inputs.binary_border == 0.0

    outputs = BinFeatureFilter(OUTPUT_USE)
    outputs.update_many([0.0, 1.0])
    assert np.array_equal(outputs.apply_filter(np.array([0.0, 1.0])), [0.0, 1.0])
    assert outputs.apply_reverse(0.7) == pytest.approx(0.7)
    assert outputs.binary_border == 0.5
    with pytest.raises(DataError):
        outputs.update(0.5)


def test_sample_is_immutable_and_validated():
    sample = Sample(3, [1.0, 2.0], [0.0])
    with pytest.raises(ValueError):
        sample.input[0] = 5.0
    with pytest.raises(DataError):
        Sample(4, [np.nan], [1.0])


def test_dataset_rejects_duplicate_ids():
    dataset = SampleDataset.from_arrays([[0.0], [1.0]], [[0.0], [1.0]])
    with pytest.raises(DataError):
        dataset.add_values(1, [2.0], [0.0])
    assert dataset.get_sample(1).input[0] == 1.0
    with pytest.raises(KeyError):
        dataset.get_sample(9)


def test_split_and_shallow_clone():
    dataset = SampleDataset.from_arrays(np.arange(10.0), np.arange(10.0))
    first, second = dataset.split(3)
    assert first.count == 7 and second.count == 3
    assert [s.id for s in second] == [7, 8, 9]
    with pytest.raises(ValueError):
        dataset.split(10)

    clone = dataset.shallow_clone()
    clone.shuffle(np.random.default_rng(0))
    assert [s.id for s in dataset] == list(range(10))
    clone.sort_by_id()
    assert [s.id for s in clone] == list(range(10))


def test_regression_folds_cover_every_sample():
    dataset = SampleDataset.from_arrays(np.arange(100.0), np.arange(100.0))
    folds = dataset.folderize(0.1, "regression")
    assert len(folds) == 10
    assert all(fold.count == 10 for fold in folds)
    assert _ids(folds) == list(range(100))


def test_regression_fold_ratio_is_capped():
    dataset = SampleDataset.from_arrays(np.arange(10.0), np.arange(10.0))
    assert len(dataset.folderize(0.9, "regression")) == 2


def test_binary_folds_keep_both_classes():
    outputs = np.array([0.0] * 10 + [1.0] * 10)
    dataset = SampleDataset.from_arrays(np.arange(20.0), outputs)
    folds = dataset.folderize(0.25, "binary")
    assert len(folds) == 4
    assert _ids(folds) == list(range(20))
    for fold in folds:
        labels = {float(s.output[0]) for s in fold}
        assert labels == {0.0, 1.0}


def test_binary_folds_need_two_samples_per_class():
    dataset = SampleDataset.from_arrays(np.arange(5.0), [0.0, 0.0, 0.0, 0.0, 1.0])
    with pytest.raises(DataError):
        dataset.folderize(0.2, "binary")


def test_categorical_folds_are_stratified():
    eye = np.eye(3)
    outputs = np.repeat(eye, 10, axis=0)
    dataset = SampleDataset.from_arrays(np.arange(30.0), outputs)
    folds = dataset.folderize(0.2, "categorical")
    assert len(folds) == 5
    for fold in folds:
        counts = fold.output_matrix().sum(axis=0)
        assert np.array_equal(counts, [2.0, 2.0, 2.0])


def test_categorical_folds_reject_multi_hot_rows():
    dataset = SampleDataset.from_arrays([[0.0], [1.0]], [[1.0, 1.0], [0.0, 1.0]])
    with pytest.raises(DataError):
        dataset.folderize(0.5, "categorical")


def test_folderize_needs_two_samples():
    dataset = SampleDataset.from_arrays([[0.0]], [[0.0]])
    with pytest.raises(DataError):
        dataset.folderize(0.5, "regression")


def test_create_standardized_round_trip():
    rng = np.random.default_rng(0)
    inputs = rng.normal(5.0, 2.0, size=(30, 3))
    outputs = rng.normal(-1.0, 4.0, size=(30, 2))
    dataset = SampleDataset.from_arrays(inputs, outputs)
    std, in_filters, out_filters = dataset.create_standardized("regression")
    assert [s.id for s in std] == [s.id for s in dataset]
    assert np.all(np.abs(std.input_matrix()) <= 1.0 + 1e-12)
    assert np.allclose(reverse_filters(out_filters, std.output_matrix()), outputs)
    assert len(in_filters) == 3


def test_create_shuffled_similar_keeps_class_composition():
    train = SampleDataset.from_arrays(np.arange(6.0), [0, 0, 1, 1, 1, 0])
    test = SampleDataset.from_arrays(np.arange(4.0), [1, 0, 1, 0])
    new_train, new_test = SampleDataset.create_shuffled_similar(
        np.random.default_rng(5), "binary", train, test
    )
    assert new_train.count == 6 and new_test.count == 4
    assert new_train.output_matrix().sum() == train.output_matrix().sum()


def test_builtin_datasets_are_registered():
    names = set(available_datasets())
    assert {"xor", "sine", "blobs", "csv_regression", "csv_binary", "csv_classification"} <= names
    spec = get_dataset("blobs", n_per_class=10, n_classes=3)
    assert spec.task_type == "categorical"
    assert spec.training.output_length == 3
    assert spec.training.count + spec.testing.count == 30
    with pytest.raises(KeyError, match="Available datasets"):
        get_dataset("mnist")


def test_csv_classification_loader(tmp_path):
    path = tmp_path / "data.csv"
    rows = ["a,b,label"] + [f"{i},{i % 3},{'cat' if i % 2 else 'dog'}" for i in range(20)]
    path.write_text("\n".join(rows) + "\n")
    spec = get_dataset("csv_classification", csv_path=path, target_col="label", test_split=0.25)
    assert spec.output_feature_names == ["cat", "dog"]
    assert spec.training.count == 15
    assert spec.testing.count == 5
    assert spec.training.input_length == 2


def test_csv_binary_loader_validates_targets(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("x,target\n1,0\n2,2\n3,1\n")
    with pytest.raises(DataError):
        get_dataset("csv_binary", csv_path=path)
    with pytest.raises(KeyError):
        get_dataset("csv_regression", csv_path=path, target_col="missing")
