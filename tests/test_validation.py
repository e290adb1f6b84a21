import numpy as np
import pytest

from ouzel.model import SDM
from ouzel.validation import (
    CrossValidation,
    best_threshold,
    crossvalidate,
    forwardselection,
    kfold,
    threshold_sweep,
    variable_importance,
)


@pytest.fixture
def folds(sdm):
    return kfold(sdm, k=5, seed=0)


def test_kfold_partitions_instances(sdm, folds):
    assert len(folds) == 5
    validation = np.concatenate([v for _, v in folds])
    assert sorted(validation) == list(range(len(sdm.y)))
    for training, valid in folds:
        assert not set(training) & set(valid)
        assert sdm.y[valid].any() and not sdm.y[valid].all()


def test_kfold_needs_two_folds(sdm):
    with pytest.raises(ValueError):
        kfold(sdm, k=1)


def test_crossvalidate(sdm, folds):
    cv = crossvalidate(sdm, folds)

    assert len(cv.training) == len(cv.validation) == 5
    assert cv.mean("mcc") > 0.8
    assert cv.mean("mcc", on="training") > 0.8
    assert not sdm.is_trained


def test_crossvalidate_fixed_threshold(sdm, folds):
    cv = crossvalidate(sdm, folds, thr=0.0)
    assert all(cm.tpr() == 1.0 and cm.fpr() == 1.0 for cm in cv.validation)


def test_mean_ignores_undefined_values():
    from ouzel.metrics import ConfusionMatrix

    cv = CrossValidation(validation=[ConfusionMatrix(0, 0, 5, 5), ConfusionMatrix(5, 0, 0, 5)])
    assert cv.mean("mcc") == pytest.approx(1.0)
    assert np.isnan(CrossValidation().mean("mcc"))


def test_threshold_sweep(sdm, folds):
    thresholds = np.linspace(0.0, 1.0, 11)
    sweep = threshold_sweep(sdm, folds, thresholds)

    assert len(sweep) == 11
    assert sweep[0].mean("tpr") == 1.0
    best = best_threshold(sweep)
    scores = [cv.mean("mcc", "training") for cv in sweep]
    assert scores[best] == pytest.approx(np.nanmax(scores))
    assert 0 < best < 10


def test_threshold_sweep_matches_crossvalidation(sdm, folds):
    sweep = threshold_sweep(sdm, folds, np.array([0.3]))
    cv = crossvalidate(sdm, folds, threshold=False, thr=0.3)
    assert sweep[0].validation == cv.validation


def test_forwardselection_keeps_included_variable(sdm, folds):
    forwardselection(sdm, folds, included=[1])

    assert sdm.variables[0] == 1
    assert len(set(sdm.variables)) == len(sdm.variables)
    # the east-west gradient separates the classes
    assert 0 in sdm.variables
    assert sdm.is_trained


def test_forwardselection_from_scratch(sdm, folds):
    forwardselection(sdm, folds)
    assert sdm.variables[0] == 0


def test_forwardselection_without_gain_keeps_included():
    rng = np.random.default_rng(0)
    y = np.arange(60) % 3 == 0
    X = np.column_stack([y * 10.0 + rng.normal(scale=0.01, size=60), rng.normal(size=(60, 2))])
    sdm = SDM(X, y, random_state=0)

    forwardselection(sdm, kfold(sdm, k=3, seed=0), included=[0])
    assert sdm.variables == [0]
    assert sdm.is_trained


def test_variable_importance(sdm, folds):
    importance = variable_importance(sdm, folds, n_repeats=3, seed=0)

    assert importance.shape == (3,)
    assert importance.sum() == pytest.approx(1.0)
    assert np.argmax(importance) == 0
