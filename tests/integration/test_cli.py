import json
from pathlib import Path

import pytest

from cli.main import main


def _result(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_cli_preset_run(tmp_path, capsys):
    override = tmp_path / "short.json"
    override.write_text(json.dumps({"model": {"epochs": 20}}))
    run_dir = tmp_path / "xor"
    main(["--preset", "xor", "--config", str(override), "--run-dir", str(run_dir), "--seed", "3"])
    result = _result(capsys)
    assert set(result) == {"epochs", "manifest", "metrics", "model", "summary"}
    assert Path(result["metrics"]).parent == run_dir
    config = json.loads((run_dir / "config.json").read_text())
    assert config["model"]["epochs"] == 20
    assert config["train"]["seed"] == 3
    assert config["model"]["hidden_layers"][0]["activation"] == "tanh"


def test_cli_lists_presets(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--list-presets"])
    assert excinfo.value.code == 0
    assert {"blobs", "sine", "xor"} <= set(capsys.readouterr().out.split())


def test_cli_trains_on_csv(tmp_path, capsys):
    csv_path = tmp_path / "houses.csv"
    rows = ["rooms,area,price"] + [f"{i % 5 + 1},{30 + i},{2.0 * i + 1}" for i in range(40)]
    csv_path.write_text("\n".join(rows) + "\n")
    override = tmp_path / "override.json"
    override.write_text(
        json.dumps(
            {
                "model": {
                    "type": "network",
                    "epochs": 10,
                    "optimizer": "rprop",
                    "hidden_layers": [{"neurons": 4}],
                    "batch_size": "auto",
                }
            }
        )
    )
    dump = tmp_path / "resolved.json"
    main(
        [
            "--csv-path",
            str(csv_path),
            "--target-col",
            "price",
            "--config",
            str(override),
            "--run-dir",
            str(tmp_path / "run"),
            "--dump-config",
            str(dump),
        ]
    )
    result = _result(capsys)
    resolved = json.loads(dump.read_text())
    assert resolved["data"]["name"] == "csv_regression"
    assert resolved["data"]["options"]["target_col"] == "price"
    assert resolved["train"]["name"] == "houses"
    assert json.loads((tmp_path / "run" / "metrics_test.json").read_text())["rmse"] >= 0.0
    assert Path(result["model"]).exists()
