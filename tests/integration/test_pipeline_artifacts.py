import io
import json
from pathlib import Path

import pytest

from easymlp.core.types import ProgressInfo
from easymlp.models import NetworkModel, load_model
from easymlp.reporting import ConsoleProgress, CsvSink, JsonlSink, write_summary
from easymlp.training import pipelines


def _xor_config(run_dir, **train):
    config = json.loads(json.dumps(pipelines.load_preset("xor")))
    config["model"]["epochs"] = 60
    config["train"].update({"run_dir": str(run_dir), **train})
    return config


def test_xor_pipeline_writes_artifacts(tmp_path):
    result = pipelines.run_pipeline(_xor_config(tmp_path / "xor"))
    run_dir = tmp_path / "xor"
    for name in (
        "metrics.jsonl",
        "metrics.csv",
        "metrics_test.json",
        "config.json",
        "manifest.json",
        "summary.json",
        "model.pkl",
    ):
        assert (run_dir / name).exists(), name

    assert json.loads((run_dir / "metrics_test.json").read_text()) == {}
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["dataset"]["name"] == "xor"
    assert manifest["config"]["model"]["type"] == "network"
    assert "git_sha" in manifest

    summary = json.loads(Path(result.summary_path).read_text())
    assert list(summary["models"]) == ["xor"]
    assert summary["records"] == result.epochs
    assert "cost" in summary["models"]["xor"]["metrics"]

    records = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines()]
    assert len(records) == result.epochs
    assert records[0]["model"] == "xor" and records[0]["seed"] == 7

    model = load_model(result.model_path)
    assert isinstance(model, NetworkModel)
    assert not (run_dir / "cost.png").exists()


def test_pipeline_reports_test_metrics_and_plots(tmp_path):
    config = json.loads(json.dumps(pipelines.load_preset("blobs")))
    config["model"]["epochs"] = 5
    config["train"].update({"run_dir": str(tmp_path / "blobs"), "enable_plots": True})
    pipelines.run_pipeline(config)

    test_metrics = json.loads((tmp_path / "blobs" / "metrics_test.json").read_text())
    assert {"accuracy", "samples"} <= set(test_metrics)
    assert (tmp_path / "blobs" / "cost.png").exists()


def test_progress_every_prints_status_lines(tmp_path, capsys):
    pipelines.run_pipeline(_xor_config(tmp_path / "xor", progress_every=20))
    out = capsys.readouterr().out
    assert "=== EasyMLP run ===" in out
    assert "xor | attempt 1/3 | epoch " in out
    assert "| cost " in out


def test_presets_are_listed_and_validated():
    names = set(pipelines.presets())
    assert {"xor", "sine", "blobs"} <= names
    with pytest.raises(KeyError, match="Available presets"):
        pipelines.load_preset("missing")


def test_yaml_preset_file_is_read(tmp_path):
    path = tmp_path / "tiny.yaml"
    path.write_text("data:\n  name: xor\nmodel:\n  epochs: 3\ntrain:\n  seed: 1\n")
    preset = pipelines._read_preset_file(path)
    assert preset["model"] == {"epochs": 3}
    other = tmp_path / "tiny.toml"
    other.write_text("x = 1\n")
    with pytest.raises(ValueError):
        pipelines._read_preset_file(other)


def _info(name, epoch, stopped=False):
    return ProgressInfo(
        model_name=name,
        attempt=1,
        max_attempts=2,
        epoch=epoch,
        max_epochs=10,
        cost=0.5 / epoch,
        train_metrics={"rmse": 0.25},
        validation_metrics={"rmse": 0.5},
        best_attempt=1,
        best_epoch=epoch,
        stopped=stopped,
    )


def test_sinks_record_progress(tmp_path):
    jsonl = JsonlSink(tmp_path / "m.jsonl", seed=3, sha="abc")
    csv_sink = CsvSink(tmp_path / "m.csv")
    for epoch in (1, 2):
        for sink in (jsonl, csv_sink):
            sink.on_progress(_info("net", epoch))
    jsonl.on_epoch(3, {"loss": 0.1, "flag": True})

    rows = [json.loads(line) for line in (tmp_path / "m.jsonl").read_text().splitlines()]
    assert rows[0]["sha"] == "abc" and rows[0]["seed"] == 3
    assert rows[1]["val_rmse"] == 0.5
    assert rows[2] == {"model": "", "epoch": 3, "seed": 3, "sha": "abc", "loss": 0.1}

    lines = (tmp_path / "m.csv").read_text().splitlines()
    assert len(lines) == 3
    header = lines[0].split(",")
    assert header == sorted(header) and "train_rmse" in header

    summary_path = write_summary(tmp_path / "m.jsonl", tmp_path / "s.json", tail=2)
    summary = json.loads(Path(summary_path).read_text())
    assert set(summary["models"]) == {"", "net"}
    net = summary["models"]["net"]
    assert net["tail_window"] == 2
    assert net["metrics"]["cost"]["last"] == pytest.approx(0.25)
    assert "epoch" not in net["metrics"]


def test_console_progress_prints_periodically():
    stream = io.StringIO()
    console = ConsoleProgress(every=2, stream=stream)
    for epoch in (1, 2, 3):
        console.on_progress(_info("net", epoch))
    console.on_progress(_info("net", 5, stopped=True))
    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("net | attempt 1/2 | epoch 2/10 | cost 0.25")
    assert "val rmse 0.5000" in lines[0]
    assert lines[1].endswith("best 1:5")
