"""
Training data preparation utilities.

Presences are rasterised onto the predictor grid, and pseudo-absences are
drawn from the cells far enough from any presence.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import rasterio
from sklearn.neighbors import BallTree

from .layers import LayerStack

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def presence_layer(stack: LayerStack, points: list[tuple[float, float]]) -> np.ndarray:
    """
    Mark the cells holding at least one occurrence.

    Points off the grid or on cells with missing data are ignored.

    Args:
        stack: Predictor layers defining the grid
        points: List of (lon, lat) tuples

    Returns:
        Boolean array of shape (rows, cols)
    """
    presence = np.zeros(stack.grid_shape, dtype=bool)
    _, on_data = stack.sample_at_points(points)

    for (lon, lat), keep in zip(points, on_data):
        if keep:
            presence[stack.cell_of(lon, lat)] = True

    dropped = int((~on_data).sum())
    if dropped:
        logger.info(f"{dropped} occurrences outside the valid predictor cells")
    logger.info(f"{presence.sum()} presence cells from {len(points)} occurrences")
    return presence


def distance_to_event(stack: LayerStack, presence: np.ndarray) -> np.ndarray:
    """
    Great-circle distance (km) from every valid cell to the closest presence.

    Returns:
        Array of shape (rows, cols), NaN on cells with missing data
    """
    if not presence.any():
        raise ValueError("Need at least one presence cell")

    valid = stack.valid_mask()
    p_lon, p_lat = stack.cell_centers(presence & valid)
    c_lon, c_lat = stack.cell_centers(valid)

    tree = BallTree(np.radians(np.column_stack([p_lat, p_lon])), metric="haversine")
    dist, _ = tree.query(np.radians(np.column_stack([c_lat, c_lon])), k=1)

    distance = np.full(stack.grid_shape, np.nan)
    distance[valid] = dist[:, 0] * EARTH_RADIUS_KM
    return distance


def generate_pseudoabsences(
    stack: LayerStack,
    presence: np.ndarray,
    buffer_km: float,
    ratio: float = 2,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Draw pseudo-absence cells away from the presences.

    Cells closer than buffer_km to a presence are excluded. The remaining
    cells are sampled without replacement, with a probability proportional
    to their distance to the closest presence.

    Args:
        stack: Predictor layers defining the grid
        presence: Boolean presence layer
        buffer_km: Exclusion distance around presences
        ratio: Number of pseudo-absences per presence cell
        seed: Random seed for reproducibility

    Returns:
        Boolean array of shape (rows, cols)
    """
    rng = np.random.default_rng(seed)
    distance = distance_to_event(stack, presence)

    known = np.nan_to_num(distance, nan=-1.0)
    candidates = np.nonzero((known >= buffer_km) & (known > 0))
    n_candidates = len(candidates[0])
    n_samples = int(ratio * presence.sum())

    if n_candidates < n_samples:
        logger.warning(f"Only {n_candidates} cells available for pseudo-absences (requested {n_samples})")
        n_samples = n_candidates
    if n_samples == 0:
        raise ValueError(f"No cell is farther than {buffer_km} km from a presence")

    weights = distance[candidates]
    picked = rng.choice(n_candidates, size=n_samples, replace=False, p=weights / weights.sum())

    absence = np.zeros(stack.grid_shape, dtype=bool)
    absence[candidates[0][picked], candidates[1][picked]] = True
    logger.info(f"Generated {n_samples} pseudo-absences (buffer: {buffer_km} km)")
    return absence


def prepare_training_data(
    stack: LayerStack,
    presence: np.ndarray,
    absence: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Build the feature matrix from the presence and pseudo-absence cells.

    Returns:
        Tuple of (X features, y labels, cells)
        - X: array of shape (n_samples, bands)
        - y: boolean labels (True for presences)
        - cells: (n_samples, 2) row and column of every sample
    """
    if (presence & absence).any():
        raise ValueError("A cell cannot be both a presence and a pseudo-absence")

    valid = stack.valid_mask()
    pres_cells = np.argwhere(presence & valid)
    abs_cells = np.argwhere(absence & valid)
    cells = np.vstack([pres_cells, abs_cells])

    X = stack.data[:, cells[:, 0], cells[:, 1]].T
    y = np.array([True] * len(pres_cells) + [False] * len(abs_cells))

    logger.info(f"Training samples: {len(X)} (positive: {len(pres_cells)}, negative: {len(abs_cells)})")
    return X, y, cells


def transfer_points(mask: np.ndarray, source: LayerStack, target: LayerStack) -> np.ndarray:
    """Move the marked cells of a layer onto the grid of another stack."""
    lons, lats = source.cell_centers(mask)
    moved = np.zeros(target.grid_shape, dtype=bool)
    for lon, lat in zip(lons, lats):
        cell = target.cell_of(lon, lat)
        if cell is not None:
            moved[cell] = True
    return moved


def save_occurrence_layers(
    path: str | Path,
    presence: np.ndarray,
    absence: np.ndarray,
    stack: LayerStack,
) -> Path:
    """Write presences (band 1) and pseudo-absences (band 2) as an int8 GeoTIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows, cols = stack.grid_shape
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=rows,
        width=cols,
        count=2,
        dtype="int8",
        crs=stack.crs,
        transform=stack.transform,
        nodata=0,
    ) as dst:
        dst.write(presence.astype(np.int8), 1)
        dst.write(absence.astype(np.int8), 2)
        dst.set_band_description(1, "presence")
        dst.set_band_description(2, "pseudo-absence")
    logger.info(f"Saved {presence.sum()} presences and {absence.sum()} pseudo-absences to {path}")
    return path


def load_occurrence_layers(path: str | Path) -> tuple[np.ndarray, np.ndarray]:
    """Read the presence and pseudo-absence layers written by save_occurrence_layers."""
    with rasterio.open(path) as src:
        data = src.read()
    return data[0] > 0, data[1] > 0
