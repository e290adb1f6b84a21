import json

import numpy as np
import pytest

from ouzel import config, pipeline
from ouzel.layers import LayerStack
from ouzel.training import load_occurrence_layers

from .conftest import make_stack

NAMES = ("BIO1", "BIO2", "BIO3", "Shrubs", "Snow/Ice")


@pytest.fixture
def points():
    """Occurrences on cell centers in the east of the grid."""
    rng = np.random.default_rng(3)
    lons = 8.05 + 0.1 * rng.integers(0, 9, size=20)
    lats = 45.55 + 0.1 * rng.integers(0, 20, size=20)
    return [(round(float(x), 2), round(float(y), 2)) for x, y in zip(lons, lats)]


@pytest.fixture
def data_dir(tmp_path, points):
    layers_path = tmp_path / "data" / config.LAYERS_FILE
    make_stack(NAMES).save(layers_path)
    presences_path = pipeline.write_presences(tmp_path / "data" / config.PRESENCES_FILE, points)
    return layers_path, presences_path


def test_presences_round_trip(tmp_path, points):
    path = pipeline.write_presences(tmp_path / "presences.csv", points)

    assert "\t" in path.read_text().splitlines()[0]
    assert pipeline.read_presences(path) == points


def test_write_layer_names(tmp_path):
    path = pipeline.write_layer_names(tmp_path / "layernames.csv", list(NAMES))
    assert path.read_text().splitlines() == list(NAMES)


def test_paired_variable():
    bioclim = list(config.BIOCLIM_NAMES)
    assert pipeline.paired_variable(bioclim, [0, 4], 0) == bioclim.index("BIO10")
    assert pipeline.paired_variable(list(NAMES), [0, 2], 0) == 2
    assert pipeline.paired_variable(list(NAMES), [0], 0) == 1
    assert pipeline.paired_variable(bioclim, [9], 9) == 10


def test_prepare_data(tmp_path, monkeypatch, boundary, points):
    full = make_stack(NAMES)

    def fake_download(provider, bbox, boundary, layers=None):
        names = config.BIOCLIM_NAMES if provider == "chelsa" else config.LANDCOVER_NAMES
        return [full.subset([n]) for n in full.names if n in names]

    monkeypatch.setattr(pipeline, "load_boundary", lambda iso: boundary)
    monkeypatch.setattr(pipeline, "download_layers", fake_download)
    monkeypatch.setattr(pipeline, "fetch_presences", lambda *args, **kwargs: points)

    paths = pipeline.prepare_data(tmp_path / "out", buffer_km=6.0, seed=0)

    assert set(paths) == {"layers", "presences", "layernames", "occurrences"}
    assert all(p.exists() for p in paths.values())
    assert LayerStack.load(paths["layers"]).names == list(NAMES)
    assert pipeline.read_presences(paths["presences"]) == points

    presence, absence = load_occurrence_layers(paths["occurrences"])
    assert absence.sum() == 2 * presence.sum()
    assert not (presence & absence).any()


def test_run_lecture(tmp_path, data_dir, boundary):
    layers_path, presences_path = data_dir
    out = tmp_path / "lecture"

    results = pipeline.run_lecture(
        out,
        layers_path=layers_path,
        presences_path=presences_path,
        boundary=boundary,
        n_folds=3,
        n_thresholds=21,
        n_bags=3,
        n_inflated=5,
        seed=0,
    )

    assert results["n_absences"] == 2 * results["n_presences"]
    assert results["variables"][0] == "BIO1"
    assert 0.0 <= results["best_threshold"] <= 1.0
    assert results["tuned_cv_mcc"] > 0.5
    assert set(results["shapley_importance"]) == set(results["variables"])
    assert len(results["landcover"]["member_variables"]) == 3

    for name in ["occurrences", "pseudoabsences", "tuned_range", "roc", "shapley_map", "inflated_responses"]:
        assert (out / "figures" / f"{name}.png").exists()
    for name in ["null_models", "crossvalidation", "crossvalidation_tuned", "shapley_importance", "landcover"]:
        assert (out / "tables" / f"{name}.md").exists()
    assert (out / "probability.tif").exists()
    assert (out / "sdm.joblib").exists()

    with open(out / "summary.json") as f:
        assert json.load(f)["variables"] == results["variables"]


def test_run_lecture_without_landcover(tmp_path, data_dir, boundary):
    layers_path, presences_path = data_dir
    results = pipeline.run_lecture(
        tmp_path / "lecture",
        layers_path=layers_path,
        presences_path=presences_path,
        boundary=boundary,
        n_folds=3,
        n_thresholds=11,
        n_inflated=2,
        landcover=False,
    )
    assert "landcover" not in results


def test_run_landcover_needs_landcover_layers(stack, presence, absence):
    with pytest.raises(ValueError):
        pipeline.run_landcover(stack, stack, presence, absence, folds=3)
