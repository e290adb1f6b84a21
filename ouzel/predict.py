"""
Spatial prediction of a trained model.
"""

import logging
from pathlib import Path

import numpy as np
import rasterio
from tqdm import tqdm

from .layers import LayerStack
from .model import SDM

logger = logging.getLogger(__name__)


def predict_layer(
    sdm: SDM,
    stack: LayerStack,
    threshold: bool = False,
    batch_size: int = 15000,
) -> np.ndarray:
    """
    Predict on every valid cell of a stack.

    Args:
        sdm: Trained model, built on the same layers as the stack
        stack: Predictor layers
        threshold: Return the range (1.0 inside, 0.0 outside) instead of probabilities
        batch_size: Number of cells predicted at once

    Returns:
        Array of shape (rows, cols), NaN off the valid cells
    """
    if len(stack) != sdm.X.shape[1]:
        raise ValueError(f"Stack has {len(stack)} layers, model was built on {sdm.X.shape[1]}")

    features = stack.features()
    n_cells = len(features)
    scores = np.zeros(n_cells, dtype=np.float32)

    for i in tqdm(range(0, n_cells, batch_size), desc="Predicting"):
        end = min(i + batch_size, n_cells)
        scores[i:end] = sdm.predict(features[i:end], threshold=threshold)

    if not threshold:
        logger.info(f"Score range: {scores.min():.3f} - {scores.max():.3f}")
    else:
        logger.info(f"Range covers {int(scores.sum()):,} of {n_cells:,} cells ({100 * scores.mean():.1f}%)")

    return stack.to_raster(scores)


def classify_points(range_map: np.ndarray, presence: np.ndarray, absence: np.ndarray) -> dict[str, np.ndarray]:
    """
    Split the training cells by agreement with the predicted range.

    Returns:
        Dictionary of boolean layers: correct_presences, missed_presences,
        wrong_absences, correct_absences
    """
    inside = np.nan_to_num(range_map, nan=0.0) > 0.5
    return {
        "correct_presences": presence & inside,
        "missed_presences": presence & ~inside,
        "wrong_absences": absence & inside,
        "correct_absences": absence & ~inside,
    }


def save_prediction(path: str | Path, raster: np.ndarray, stack: LayerStack) -> Path:
    """Save a prediction on the grid of the stack as a GeoTIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=raster.shape[0],
        width=raster.shape[1],
        count=1,
        dtype=np.float32,
        crs=stack.crs,
        transform=stack.transform,
        nodata=np.nan,
    ) as dst:
        dst.write(raster.astype(np.float32), 1)
    logger.info(f"Saved prediction raster: {path}")
    return path
