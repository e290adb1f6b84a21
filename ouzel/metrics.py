"""
Confusion matrices, skill measures and null classifiers.
"""

from dataclasses import dataclass

import numpy as np
from sklearn.metrics import confusion_matrix


def _ratio(num: float, den: float) -> float:
    return float(num / den) if den != 0 else float("nan")


@dataclass(frozen=True)
class ConfusionMatrix:
    """
    Counts of a binary classification.

    Counts are floats so that null classifiers can be expressed as
    expected counts.
    """

    tp: float
    fp: float
    fn: float
    tn: float

    @classmethod
    def from_predictions(cls, predicted, observed) -> "ConfusionMatrix":
        predicted = np.asarray(predicted, dtype=bool)
        observed = np.asarray(observed, dtype=bool)
        tn, fp, fn, tp = confusion_matrix(observed, predicted, labels=[False, True]).ravel()
        return cls(float(tp), float(fp), float(fn), float(tn))

    @classmethod
    def sweep(cls, probability, observed, thresholds) -> list["ConfusionMatrix"]:
        """One confusion matrix per threshold applied to the same scores."""
        observed = np.asarray(observed, dtype=bool)
        predicted = np.asarray(probability)[np.newaxis, :] >= np.asarray(thresholds)[:, np.newaxis]
        tp = (predicted & observed).sum(axis=1)
        fp = (predicted & ~observed).sum(axis=1)
        fn = (~predicted & observed).sum(axis=1)
        tn = (~predicted & ~observed).sum(axis=1)
        return [cls(float(a), float(b), float(c), float(d)) for a, b, c, d in zip(tp, fp, fn, tn)]

    @property
    def n(self) -> float:
        return self.tp + self.fp + self.fn + self.tn

    def tpr(self) -> float:
        return _ratio(self.tp, self.tp + self.fn)

    def tnr(self) -> float:
        return _ratio(self.tn, self.tn + self.fp)

    def fpr(self) -> float:
        return _ratio(self.fp, self.fp + self.tn)

    def fnr(self) -> float:
        return _ratio(self.fn, self.fn + self.tp)

    def ppv(self) -> float:
        return _ratio(self.tp, self.tp + self.fp)

    def npv(self) -> float:
        return _ratio(self.tn, self.tn + self.fn)

    def accuracy(self) -> float:
        return _ratio(self.tp + self.tn, self.n)

    def informedness(self) -> float:
        return self.tpr() + self.tnr() - 1.0

    def f1(self) -> float:
        return _ratio(2 * self.tp, 2 * self.tp + self.fp + self.fn)

    def mcc(self) -> float:
        """Matthews correlation coefficient, NaN when a margin is empty."""
        den = (self.tp + self.fp) * (self.tp + self.fn) * (self.tn + self.fp) * (self.tn + self.fn)
        return _ratio(self.tp * self.tn - self.fp * self.fn, np.sqrt(den))

    def dor(self) -> float:
        """Diagnostic odds ratio, infinite when there are no errors."""
        num = self.tp * self.tn
        den = self.fp * self.fn
        if den == 0:
            return float("inf") if num > 0 else float("nan")
        return float(num / den)

    def kappa(self) -> float:
        if self.n == 0:
            return float("nan")
        expected = ((self.tp + self.fp) * (self.tp + self.fn) + (self.fn + self.tn) * (self.fp + self.tn)) / self.n ** 2
        return _ratio(self.accuracy() - expected, 1.0 - expected)


METRICS = ["mcc", "ppv", "npv", "dor", "accuracy"]


def _labels(obj) -> np.ndarray:
    if hasattr(obj, "labels"):
        return np.asarray(obj.labels(), dtype=bool)
    return np.asarray(obj, dtype=bool)


def noskill(obj) -> ConfusionMatrix:
    """Random guesses at the observed prevalence."""
    y = _labels(obj)
    n, p = len(y), y.mean()
    return ConfusionMatrix(n * p * p, n * (1 - p) * p, n * p * (1 - p), n * (1 - p) * (1 - p))


def coinflip(obj) -> ConfusionMatrix:
    """Random guesses with a probability of one half."""
    y = _labels(obj)
    n, p = len(y), y.mean()
    return ConfusionMatrix(0.5 * n * p, 0.5 * n * (1 - p), 0.5 * n * p, 0.5 * n * (1 - p))


def constantpositive(obj) -> ConfusionMatrix:
    """Every instance predicted as a presence."""
    y = _labels(obj)
    n, p = len(y), y.mean()
    return ConfusionMatrix(n * p, n * (1 - p), 0.0, 0.0)


def constantnegative(obj) -> ConfusionMatrix:
    """Every instance predicted as an absence."""
    y = _labels(obj)
    n, p = len(y), y.mean()
    return ConfusionMatrix(0.0, 0.0, n * p, n * (1 - p))


NULL_MODELS = {
    "noskill": noskill,
    "coinflip": coinflip,
    "constantpositive": constantpositive,
    "constantnegative": constantnegative,
}
