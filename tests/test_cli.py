from pathlib import Path

import pytest

from ouzel import cli, config, pipeline


def test_layers_command(monkeypatch, tmp_path, capsys):
    calls = {}

    def fake_prepare(**kwargs):
        calls.update(kwargs)
        return {"layers": tmp_path / "layers.tiff"}

    monkeypatch.setattr(pipeline, "prepare_data", fake_prepare)
    cli.main(["layers", "-o", str(tmp_path), "--buffer", "10", "--seed", "3"])

    assert calls["output_dir"] == tmp_path
    assert calls["buffer_km"] == 10.0
    assert calls["seed"] == 3
    assert calls["species_name"] == config.SPECIES_NAME
    assert "Wrote 1 files" in capsys.readouterr().out


def test_lecture_command(monkeypatch, tmp_path, capsys):
    calls = {}

    def fake_lecture(**kwargs):
        calls.update(kwargs)
        return {"variables": ["BIO1", "BIO12"], "threshold": 0.25, "tuned_cv_mcc": 0.8}

    monkeypatch.setattr(pipeline, "run_lecture", fake_lecture)
    cli.main([
        "--verbose", "lecture",
        "--layers", "data/layers.tiff",
        "--presences", "data/presences.csv",
        "-k", "5",
        "--no-landcover",
    ])

    assert calls["layers_path"] == Path("data/layers.tiff")
    assert calls["presences_path"] == Path("data/presences.csv")
    assert calls["n_folds"] == 5
    assert calls["buffer_km"] == config.LECTURE_BUFFER_KM
    assert calls["landcover"] is False
    out = capsys.readouterr().out
    assert "BIO1, BIO12" in out
    assert "0.250" in out


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.main([])
