"""
Cross-validation, threshold tuning and variable selection.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from sklearn.inspection import permutation_importance
from sklearn.model_selection import StratifiedKFold
from tqdm import tqdm

from .metrics import ConfusionMatrix
from .model import SDM

logger = logging.getLogger(__name__)

Fold = tuple[np.ndarray, np.ndarray]


@dataclass
class CrossValidation:
    """Confusion matrices on the training and validation part of every fold."""

    training: list[ConfusionMatrix] = field(default_factory=list)
    validation: list[ConfusionMatrix] = field(default_factory=list)

    def mean(self, metric: str = "mcc", on: str = "validation") -> float:
        matrices = getattr(self, on)
        values = [getattr(cm, metric)() for cm in matrices]
        finite = [v for v in values if np.isfinite(v)]
        return float(np.mean(finite)) if finite else float("nan")


def kfold(sdm: SDM, k: int = 10, seed: Optional[int] = None) -> list[Fold]:
    """
    Stratified k-fold splits of the instances of a model.

    Returns:
        List of (training indices, validation indices)
    """
    if k < 2:
        raise ValueError(f"Need at least 2 folds, got {k}")
    splitter = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    return list(splitter.split(sdm.X, sdm.y))


def _fit_fold(sdm: SDM, training: np.ndarray, threshold: bool) -> SDM:
    model = sdm.copy()
    return model.train(training=training, threshold=threshold)


def crossvalidate(
    sdm: SDM,
    folds: Sequence[Fold],
    threshold: bool = True,
    thr: Optional[float] = None,
) -> CrossValidation:
    """
    Train a copy of the model on every fold and score both parts.

    Args:
        sdm: Model to validate (left untouched)
        folds: List of (training indices, validation indices)
        threshold: Tune the threshold on every training part
        thr: Fixed threshold used to score the predictions (overrides the tuned one)

    Returns:
        CrossValidation with one confusion matrix per fold and part
    """
    result = CrossValidation()
    for training, validation in folds:
        model = _fit_fold(sdm, training, threshold)
        cutoff = model.threshold if thr is None else thr
        for part, idx in (("training", training), ("validation", validation)):
            probability = model.predict(sdm.X[idx], threshold=False)
            getattr(result, part).append(ConfusionMatrix.from_predictions(probability >= cutoff, sdm.y[idx]))
    return result


def threshold_sweep(
    sdm: SDM,
    folds: Sequence[Fold],
    thresholds: Optional[np.ndarray] = None,
) -> list[CrossValidation]:
    """
    Cross-validation at a series of fixed thresholds.

    Each fold is trained once; its predictions are scored at every
    threshold.

    Returns:
        One CrossValidation per threshold
    """
    if thresholds is None:
        thresholds = np.linspace(0.0, 1.0, 200)

    sweep = [CrossValidation() for _ in thresholds]
    for training, validation in tqdm(folds, desc="Threshold sweep"):
        model = _fit_fold(sdm, training, threshold=False)
        for part, idx in (("training", training), ("validation", validation)):
            probability = model.predict(sdm.X[idx], threshold=False)
            matrices = ConfusionMatrix.sweep(probability, sdm.y[idx], thresholds)
            for cv, cm in zip(sweep, matrices):
                getattr(cv, part).append(cm)
    return sweep


def best_threshold(sweep: list[CrossValidation], metric: str = "mcc", on: str = "training") -> int:
    """Index of the threshold with the highest mean score."""
    scores = np.array([cv.mean(metric, on) for cv in sweep])
    return int(np.nanargmax(np.nan_to_num(scores, nan=-np.inf)))


def forwardselection(
    sdm: SDM,
    folds: Sequence[Fold],
    included: Optional[Sequence[int]] = None,
    metric: str = "mcc",
) -> SDM:
    """
    Greedy forward selection of variables.

    Starting from the included variables, the variable giving the best mean
    validation score is added until no addition improves the score. The
    model variables are updated in place and the model is retrained.

    Args:
        sdm: Model whose variables are selected
        folds: Cross-validation folds
        included: Variables always kept in the model
        metric: Name of a ConfusionMatrix measure

    Returns:
        The model itself
    """
    pool = list(range(sdm.X.shape[1]))
    selected = list(included) if included is not None else []
    candidate = sdm.copy()

    best_score = -np.inf
    if selected:
        candidate.variables = list(selected)
        best_score = crossvalidate(candidate, folds).mean(metric)

    while True:
        remaining = [v for v in pool if v not in selected]
        if not remaining:
            break

        scores = []
        for v in remaining:
            candidate.variables = selected + [v]
            scores.append(crossvalidate(candidate, folds).mean(metric))

        scores = np.nan_to_num(scores, nan=-np.inf)
        best = int(np.argmax(scores))
        if scores[best] <= best_score:
            break

        best_score = scores[best]
        selected.append(remaining[best])
        logger.info(f"Added {sdm.names[remaining[best]]} ({metric}: {best_score:.3f})")

    if not selected:
        raise ValueError("Forward selection did not retain any variable")

    sdm.variables = selected
    sdm.train()
    logger.info(f"Selected variables: {sdm.variable_names}")
    return sdm


def variable_importance(
    sdm: SDM,
    folds: Sequence[Fold],
    n_repeats: int = 10,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Permutation importance of the selected variables.

    On every fold, each variable of the validation part is shuffled and the
    loss of MCC is recorded. Losses are averaged over folds, negative ones
    set to zero, and normalised to sum to one.

    Returns:
        Importance of each variable in sdm.variables
    """
    importance = np.zeros(len(sdm.variables))

    for training, validation in folds:
        model = _fit_fold(sdm, training, threshold=True)

        def scorer(estimator, X, y):
            column = list(estimator.classes_).index(True)
            predicted = estimator.predict_proba(X)[:, column] >= model.threshold
            return np.nan_to_num(ConfusionMatrix.from_predictions(predicted, y).mcc())

        result = permutation_importance(
            model.model,
            sdm.X[np.ix_(validation, sdm.variables)],
            sdm.y[validation],
            scoring=scorer,
            n_repeats=n_repeats,
            random_state=seed,
        )
        importance += result.importances_mean

    importance = np.clip(importance / len(folds), 0.0, None)
    total = importance.sum()
    if total == 0:
        return np.full(len(sdm.variables), 1.0 / len(sdm.variables))
    return importance / total
