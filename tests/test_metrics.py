import math

import numpy as np
import pytest

from ouzel.metrics import (
    ConfusionMatrix,
    coinflip,
    constantnegative,
    constantpositive,
    noskill,
)


@pytest.fixture
def cm():
    return ConfusionMatrix(tp=40, fp=10, fn=5, tn=45)


def test_rates(cm):
    assert cm.n == 100
    assert cm.tpr() == pytest.approx(40 / 45)
    assert cm.tnr() == pytest.approx(45 / 55)
    assert cm.fpr() == pytest.approx(10 / 55)
    assert cm.fnr() == pytest.approx(5 / 45)
    assert cm.ppv() == pytest.approx(0.8)
    assert cm.npv() == pytest.approx(0.9)
    assert cm.accuracy() == pytest.approx(0.85)
    assert cm.f1() == pytest.approx(80 / 95)


def test_mcc_and_dor(cm):
    assert cm.mcc() == pytest.approx(1750 / math.sqrt(50 * 45 * 55 * 50))
    assert cm.dor() == pytest.approx(36.0)
    assert cm.informedness() == pytest.approx(40 / 45 + 45 / 55 - 1)


def test_perfect_classifier():
    perfect = ConfusionMatrix(10, 0, 0, 10)
    assert perfect.mcc() == pytest.approx(1.0)
    assert perfect.kappa() == pytest.approx(1.0)
    assert math.isinf(perfect.dor())


def test_empty_matrix_is_undefined():
    empty = ConfusionMatrix(0, 0, 0, 0)
    for metric in ["tpr", "ppv", "accuracy", "f1", "mcc", "dor", "kappa"]:
        assert math.isnan(getattr(empty, metric)())


def test_from_predictions():
    predicted = np.array([True, True, False, False, True])
    observed = np.array([True, False, False, True, True])
    assert ConfusionMatrix.from_predictions(predicted, observed) == ConfusionMatrix(2, 1, 1, 1)


def test_sweep_matches_single_thresholds():
    rng = np.random.default_rng(0)
    probability = rng.random(50)
    observed = rng.random(50) < 0.3
    thresholds = [0.0, 0.25, 0.5, 1.0]

    swept = ConfusionMatrix.sweep(probability, observed, thresholds)
    assert swept == [ConfusionMatrix.from_predictions(probability >= t, observed) for t in thresholds]


def test_null_models():
    y = np.array([True] * 25 + [False] * 75)

    assert noskill(y).mcc() == pytest.approx(0.0)
    assert noskill(y).n == pytest.approx(100)
    assert coinflip(y).accuracy() == pytest.approx(0.5)
    assert constantpositive(y).tpr() == 1.0
    assert constantpositive(y).fpr() == 1.0
    assert constantpositive(y).ppv() == pytest.approx(0.25)
    assert constantnegative(y).npv() == pytest.approx(0.75)
    assert math.isnan(constantnegative(y).mcc())


def test_null_models_accept_a_model(sdm):
    assert constantpositive(sdm).tp == pytest.approx(sdm.y.sum())
