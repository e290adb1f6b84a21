"""
Partial responses and Shapley values.

Variables are always referred to by their column in the training matrix,
so that index 0 is the first layer of the stack (BIO1 in the lecture).
"""

import logging
from typing import Optional

import numpy as np
import shap
from tqdm import tqdm

from .layers import LayerStack
from .model import SDM

logger = logging.getLogger(__name__)

# Permutations per instance: many for the training points, few for whole maps
POINT_PERMUTATIONS = 10
LAYER_PERMUTATIONS = 2


def _reference(sdm: SDM, n: int) -> np.ndarray:
    return np.tile(sdm.X.mean(axis=0), (n, 1))


def partial_response(
    sdm: SDM,
    v: int,
    n: int = 200,
    threshold: bool = False,
    inflated: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Response of the model to one variable.

    The variable spans its training range; the others are held at their
    training mean or, when inflated, at one random value drawn within
    their training range.

    Returns:
        Tuple of (variable values, predictions)
    """
    values = sdm.X[:, v]
    x = np.linspace(values.min(), values.max(), n)

    X = _reference(sdm, n)
    if inflated:
        rng = rng or np.random.default_rng()
        X[:] = rng.uniform(sdm.X.min(axis=0), sdm.X.max(axis=0))
    X[:, v] = x

    return x, sdm.predict(X, threshold=threshold).astype(float)


def partial_response_2d(
    sdm: SDM,
    v1: int,
    v2: int,
    n: int = 50,
    threshold: bool = False,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Response of the model to two variables, the others at their mean.

    Returns:
        Tuple of (x, y, z) with z[i, j] the prediction at (x[i], y[j])
    """
    x = np.linspace(sdm.X[:, v1].min(), sdm.X[:, v1].max(), n)
    y = np.linspace(sdm.X[:, v2].min(), sdm.X[:, v2].max(), n)
    gx, gy = np.meshgrid(x, y, indexing="ij")

    X = _reference(sdm, gx.size)
    X[:, v1] = gx.ravel()
    X[:, v2] = gy.ravel()

    z = sdm.predict(X, threshold=threshold).astype(float).reshape(n, n)
    return x, y, z


def _check_stack(sdm: SDM, stack: LayerStack) -> None:
    if len(stack) != sdm.X.shape[1]:
        raise ValueError(f"Stack has {len(stack)} layers, model was built on {sdm.X.shape[1]}")


def partial_response_layer(sdm: SDM, stack: LayerStack, v: int, threshold: bool = False) -> np.ndarray:
    """Spatial partial response: the local value of one variable, the others at their mean."""
    _check_stack(sdm, stack)
    features = stack.features()
    X = _reference(sdm, len(features))
    X[:, v] = features[:, v]
    return stack.to_raster(sdm.predict(X, threshold=threshold).astype(float))


def _explainer(sdm: SDM, background_size: int, seed: Optional[int]) -> shap.PermutationExplainer:
    def f(X):
        column = list(sdm.model.classes_).index(True)
        return sdm.model.predict_proba(X)[:, column]

    background = shap.utils.sample(sdm.features(), min(background_size, len(sdm.y)), random_state=seed)
    masker = shap.maskers.Independent(background, max_samples=len(background))
    return shap.PermutationExplainer(f, masker, seed=seed)


def shapley_values(
    sdm: SDM,
    X: Optional[np.ndarray] = None,
    permutations: int = POINT_PERMUTATIONS,
    background_size: int = 100,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Shapley values of the selected variables for the probability of presence.

    Args:
        sdm: Trained model
        X: Feature matrix with every column of the training matrix
            (default: the training matrix)
        permutations: Number of permutations sampled per instance
        background_size: Number of training instances used as the reference
        seed: Random seed

    Returns:
        Array of shape (n_instances, len(sdm.variables))
    """
    if not sdm.is_trained:
        raise RuntimeError("Model has not been trained yet")
    X = sdm.X if X is None else np.asarray(X, dtype=np.float64)
    return _explain_rows(_explainer(sdm, background_size, seed), sdm, X, permutations)


def _explain_rows(explainer: shap.PermutationExplainer, sdm: SDM, X: np.ndarray, permutations: int) -> np.ndarray:
    max_evals = permutations * (2 * len(sdm.variables) + 1)
    explanation = explainer(X[:, sdm.variables], max_evals=max_evals, silent=True)
    return np.asarray(explanation.values).reshape(len(X), len(sdm.variables))


def explain(sdm: SDM, v: int, X: Optional[np.ndarray] = None, **kwargs) -> np.ndarray:
    """Shapley values of one variable (a column of the training matrix)."""
    if v not in sdm.variables:
        raise ValueError(f"Variable {v} is not used by the model")
    return shapley_values(sdm, X, **kwargs)[:, sdm.variables.index(v)]


def explain_layers(
    sdm: SDM,
    stack: LayerStack,
    batch_size: int = 2000,
    permutations: int = LAYER_PERMUTATIONS,
    background_size: int = 50,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Shapley values of every selected variable on every valid cell.

    All batches share one explainer, hence one background sample.

    Returns:
        Array of shape (len(sdm.variables), rows, cols), NaN off the valid cells
    """
    if not sdm.is_trained:
        raise RuntimeError("Model has not been trained yet")
    _check_stack(sdm, stack)
    features = stack.features().astype(np.float64)
    values = np.zeros((len(features), len(sdm.variables)), dtype=np.float32)
    explainer = _explainer(sdm, background_size, seed)

    for i in tqdm(range(0, len(features), batch_size), desc="Shapley values"):
        end = min(i + batch_size, len(features))
        values[i:end] = _explain_rows(explainer, sdm, features[i:end], permutations)

    return stack.to_raster(values)


def _as_cells(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values)
    if values.ndim == 3:
        return values.reshape(values.shape[0], -1).T
    return values


def shapley_importance(values: np.ndarray) -> np.ndarray:
    """Share of the total absolute Shapley value carried by each variable."""
    totals = np.nansum(np.abs(_as_cells(values)), axis=0)
    return totals / totals.sum()


def most_important(values: np.ndarray) -> np.ndarray:
    """
    Position (in sdm.variables) of the variable with the largest absolute
    Shapley value on every cell.

    Args:
        values: Array of shape (n_variables, rows, cols)

    Returns:
        Float array of shape (rows, cols), NaN off the valid cells
    """
    magnitude = np.abs(values)
    missing = np.isnan(magnitude).all(axis=0)
    top = np.argmax(np.nan_to_num(magnitude, nan=-1.0), axis=0).astype(np.float32)
    top[missing] = np.nan
    return top
