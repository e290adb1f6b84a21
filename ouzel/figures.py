"""
Figures for the slides.

Every function returns a matplotlib Figure; save_figure writes it to disk
and closes it.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from .layers import LayerStack
from .validation import CrossValidation

logger = logging.getLogger(__name__)

PROBABILITY_CMAP = "YlOrBr"
PARTIAL_CMAP = "PuRd"
SHAPLEY_CMAP = "BrBG"
CATEGORY_CMAP = "tab20"


def save_figure(fig: Figure, path: str | Path, dpi: int = 150) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Saved figure: {path}")
    return path


def _map_axes(figsize=(8, 4)):
    fig, ax = plt.subplots(figsize=figsize)
    ax.set_aspect("equal")
    ax.set_axis_off()
    return fig, ax


def _draw_boundary(ax, boundary: Optional[gpd.GeoDataFrame], fill: bool = False) -> None:
    if boundary is None:
        return
    if fill:
        boundary.plot(ax=ax, color="lightgrey", zorder=0)
    boundary.boundary.plot(ax=ax, color="black", linewidth=1, zorder=3)


def _extent(stack: LayerStack) -> tuple[float, float, float, float]:
    left, bottom, right, top = stack.bounds
    return left, right, bottom, top


def _cell_coords(stack: LayerStack) -> tuple[np.ndarray, np.ndarray]:
    rows, cols = stack.grid_shape
    t = stack.transform
    lons = t.c + (np.arange(cols) + 0.5) * t.a
    lats = t.f + (np.arange(rows) + 0.5) * t.e
    return lons, lats


def _scatter_cells(ax, stack: LayerStack, mask: np.ndarray, **kwargs) -> None:
    lons, lats = stack.cell_centers(mask)
    ax.scatter(lons, lats, **kwargs)


def occurrence_map(points: list[tuple[float, float]], boundary: gpd.GeoDataFrame) -> Figure:
    fig, ax = _map_axes()
    _draw_boundary(ax, boundary, fill=True)
    if points:
        lons, lats = zip(*points)
        ax.scatter(lons, lats, color="black", s=6, zorder=2)
    return fig


def pseudoabsence_map(
    stack: LayerStack,
    presence: np.ndarray,
    absence: np.ndarray,
    boundary: Optional[gpd.GeoDataFrame] = None,
) -> Figure:
    fig, ax = _map_axes()
    _draw_boundary(ax, boundary, fill=True)
    _scatter_cells(ax, stack, presence, color="black", s=8, zorder=2)
    _scatter_cells(ax, stack, absence, color="red", s=3, zorder=2)
    return fig


def layer_map(
    raster: np.ndarray,
    stack: LayerStack,
    boundary: Optional[gpd.GeoDataFrame] = None,
    contour: Optional[np.ndarray] = None,
    cmap: str = PROBABILITY_CMAP,
    vrange: Optional[tuple[float, float]] = (0.0, 1.0),
    colorbar: bool = True,
) -> Figure:
    """
    Map of a raster on the grid of the stack.

    Args:
        raster: Values of shape (rows, cols), NaN drawn transparent
        stack: Stack defining the grid
        boundary: Outline drawn on top
        contour: Boolean-like raster (e.g. the range) outlined in black
        cmap: Colormap name
        vrange: (vmin, vmax) of the colormap, None to use the data range
        colorbar: Add a colorbar
    """
    fig, ax = _map_axes()
    vmin, vmax = vrange if vrange is not None else (None, None)
    image = ax.imshow(
        np.ma.masked_invalid(raster),
        extent=_extent(stack),
        cmap=cmap,
        vmin=vmin,
        vmax=vmax,
        interpolation="nearest",
        zorder=1,
    )
    if contour is not None:
        lons, lats = _cell_coords(stack)
        # contour wants increasing coordinates, rows run north to south
        ax.contour(
            lons, lats[::-1], np.nan_to_num(contour, nan=0.0)[::-1],
            levels=[0.5], colors="black", linewidths=0.5, zorder=2,
        )
    if colorbar:
        fig.colorbar(image, ax=ax)
    _draw_boundary(ax, boundary)
    return fig


def range_map(
    range_raster: np.ndarray,
    stack: LayerStack,
    classified: dict[str, np.ndarray],
    boundary: Optional[gpd.GeoDataFrame] = None,
) -> Figure:
    """Predicted range with presences (squares) and absences (lines), errors in red."""
    fig, ax = _map_axes()
    _draw_boundary(ax, boundary, fill=True)
    ax.imshow(
        np.ma.masked_invalid(range_raster),
        extent=_extent(stack),
        cmap="Greys",
        vmin=0.0,
        vmax=6.0,
        interpolation="nearest",
        zorder=1,
    )
    style = {"s": 30, "facecolors": "none", "linewidths": 1, "zorder": 2}
    _scatter_cells(ax, stack, classified["correct_presences"], marker="s", edgecolors="black", **style)
    _scatter_cells(ax, stack, classified["missed_presences"], marker="s", edgecolors="red", **style)
    _scatter_cells(ax, stack, classified["wrong_absences"], marker="_", color="red", s=30, zorder=2)
    _scatter_cells(ax, stack, classified["correct_absences"], marker="_", color="black", s=30, zorder=2)
    _draw_boundary(ax, boundary)
    return fig


def _square_axes():
    fig, ax = plt.subplots(figsize=(4, 4))
    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, 1.0)
    return fig, ax


def threshold_curve(thresholds: np.ndarray, sweep: list[CrossValidation], best: int) -> Figure:
    """Mean MCC against the threshold, validation in black and training dashed."""
    fig, ax = _square_axes()
    ax.plot(thresholds, [cv.mean("mcc", "validation") for cv in sweep], color="black")
    ax.plot(thresholds, [cv.mean("mcc", "training") for cv in sweep], color="lightgrey", linestyle="--")
    ax.scatter([thresholds[best]], [sweep[best].mean("mcc", "validation")], color="black", zorder=3)
    ax.set_xlabel("Threshold")
    ax.set_ylabel("MCC")
    return fig


def roc_curve(sweep: list[CrossValidation], best: int) -> Figure:
    fig, ax = _square_axes()
    ax.plot([cv.mean("fpr") for cv in sweep], [cv.mean("tpr") for cv in sweep], color="black")
    ax.scatter([sweep[best].mean("fpr")], [sweep[best].mean("tpr")], color="black", zorder=3)
    ax.set_xlabel("False positive rate")
    ax.set_ylabel("True positive rate")
    return fig


def pr_curve(sweep: list[CrossValidation], best: int) -> Figure:
    fig, ax = _square_axes()
    ax.plot([cv.mean("ppv") for cv in sweep], [cv.mean("tpr") for cv in sweep], color="black")
    ax.scatter([sweep[best].mean("ppv")], [sweep[best].mean("tpr")], color="black", zorder=3)
    ax.set_xlabel("Precision")
    ax.set_ylabel("Recall")
    return fig


def partial_response_plot(x: np.ndarray, y: np.ndarray, name: str = "") -> Figure:
    fig, ax = plt.subplots(figsize=(4, 4))
    ax.plot(x, y, color="black")
    ax.set_xlabel(name)
    ax.set_ylabel("Probability")
    return fig


def partial_response_2d_plot(
    x: np.ndarray,
    y: np.ndarray,
    z: np.ndarray,
    names: Sequence[str] = ("", ""),
) -> Figure:
    fig, ax = plt.subplots(figsize=(4, 4))
    ax.pcolormesh(x, y, z.T, cmap=PROBABILITY_CMAP, vmin=0.0, vmax=1.0, shading="nearest")
    ax.set_xlabel(names[0])
    ax.set_ylabel(names[1])
    return fig


def inflated_response_plot(
    curves: list[tuple[np.ndarray, np.ndarray]],
    reference: tuple[np.ndarray, np.ndarray],
    name: str = "",
) -> Figure:
    """Inflated partial responses in grey under the mean-reference response."""
    fig, ax = plt.subplots(figsize=(4, 4))
    for x, y in curves:
        ax.plot(x, y, color="lightgrey", alpha=0.5, linewidth=0.5)
    ax.plot(*reference, color="black")
    ax.set_xlim(reference[0].min(), reference[0].max())
    ax.set_ylim(0.0, 1.0)
    ax.set_xlabel(name)
    return fig


def shapley_plot(values: np.ndarray, shapley: np.ndarray, name: str = "") -> Figure:
    """Shapley values against the variable (hexbin) and their distribution."""
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(8, 4))
    ax1.hexbin(values, shapley, gridsize=60, cmap="viridis", mincnt=1)
    ax1.set_xlabel(name)
    ax1.set_ylabel("Shapley value")
    ax2.hist(shapley, color="lightgrey", edgecolor="black", linewidth=1)
    ax2.set_xlabel("Shapley value")
    return fig
