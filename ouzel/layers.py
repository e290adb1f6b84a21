"""
Environmental layers: download, masking, trimming and stacking.

Layers are read straight from the remote GeoTIFFs (rasterio goes through
GDAL's /vsicurl/ driver), so only the window covering the study region
is transferred.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.features import geometry_mask
from rasterio.transform import Affine, array_bounds, rowcol, xy
from rasterio.warp import reproject
from rasterio.windows import Window, from_bounds
from rasterio.windows import transform as window_transform
from tqdm import tqdm

from .config import BIOCLIM_NAMES, CHELSA_URL, EARTHENV_URL, LANDCOVER_NAMES

logger = logging.getLogger(__name__)


PROVIDERS = {
    "chelsa": (CHELSA_URL, BIOCLIM_NAMES),
    "earthenv": (EARTHENV_URL, LANDCOVER_NAMES),
}


@dataclass
class LayerStack:
    """
    A stack of co-registered raster layers.

    NaN marks missing data. A cell is usable only when it is valid in
    every band.
    """

    data: np.ndarray  # (bands, rows, cols)
    transform: Affine
    crs: CRS = field(default_factory=lambda: CRS.from_epsg(4326))
    names: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.data.ndim == 2:
            self.data = self.data[np.newaxis, :, :]
        self.data = self.data.astype(np.float32, copy=False)
        if not self.names:
            self.names = [f"layer_{i + 1}" for i in range(self.data.shape[0])]
        if len(self.names) != self.data.shape[0]:
            raise ValueError(f"Got {len(self.names)} names for {self.data.shape[0]} bands")

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.data.shape

    @property
    def grid_shape(self) -> tuple[int, int]:
        return self.data.shape[1], self.data.shape[2]

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_lon, min_lat, max_lon, max_lat) of the grid."""
        rows, cols = self.grid_shape
        return array_bounds(rows, cols, self.transform)

    def __len__(self) -> int:
        return self.data.shape[0]

    def __getitem__(self, key: Union[int, str]) -> np.ndarray:
        if isinstance(key, str):
            key = self.names.index(key)
        return self.data[key]

    def valid_mask(self) -> np.ndarray:
        return ~np.isnan(self.data).any(axis=0)

    def features(self) -> np.ndarray:
        """Values at the valid cells, shape (n_cells, bands)."""
        return self.data[:, self.valid_mask()].T

    def to_raster(self, values: np.ndarray) -> np.ndarray:
        """
        Place per-cell values back on the grid.

        Args:
            values: Array of shape (n_cells,) or (n_cells, k), ordered as
                returned by features()

        Returns:
            Array of shape (rows, cols) or (k, rows, cols), NaN off the valid cells
        """
        mask = self.valid_mask()
        values = np.asarray(values)
        if values.ndim == 1:
            out = np.full(self.grid_shape, np.nan, dtype=np.float32)
            out[mask] = values
            return out
        out = np.full((values.shape[1], *self.grid_shape), np.nan, dtype=np.float32)
        out[:, mask] = values.T
        return out

    def cell_centers(self, mask: Optional[np.ndarray] = None) -> tuple[np.ndarray, np.ndarray]:
        """Longitudes and latitudes of the cells selected by mask (valid cells by default)."""
        if mask is None:
            mask = self.valid_mask()
        rows, cols = np.nonzero(mask)
        if len(rows) == 0:
            return np.array([]), np.array([])
        lons, lats = xy(self.transform, rows, cols)
        return np.asarray(lons, dtype=float), np.asarray(lats, dtype=float)

    def cell_of(self, lon: float, lat: float) -> Optional[tuple[int, int]]:
        """Row and column of the cell containing a point, None outside the grid."""
        row, col = rowcol(self.transform, lon, lat)
        rows, cols = self.grid_shape
        if 0 <= row < rows and 0 <= col < cols:
            return int(row), int(col)
        return None

    def sample_at_points(
        self, points: list[tuple[float, float]]
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Sample layer values at the given points.

        Args:
            points: List of (lon, lat) tuples

        Returns:
            Tuple of (values, valid_mask)
            - values: array of shape (n_points, bands)
            - valid_mask: boolean array, False for points off the grid or on missing data
        """
        values = np.full((len(points), len(self)), np.nan, dtype=np.float32)
        valid_mask = np.zeros(len(points), dtype=bool)

        for i, (lon, lat) in enumerate(points):
            cell = self.cell_of(lon, lat)
            if cell is None:
                continue
            values[i] = self.data[:, cell[0], cell[1]]
            valid_mask[i] = not np.isnan(values[i]).any()

        return values, valid_mask

    def subset(self, keys: Sequence[Union[int, str]]) -> "LayerStack":
        idx = [self.names.index(k) if isinstance(k, str) else int(k) for k in keys]
        return LayerStack(
            self.data[idx].copy(), self.transform, self.crs, [self.names[i] for i in idx]
        )

    def save(self, path: Union[str, Path]) -> None:
        """Write the stack as a multi-band GeoTIFF, band names as descriptions."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        bands, height, width = self.data.shape

        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=height,
            width=width,
            count=bands,
            dtype="float32",
            crs=self.crs,
            transform=self.transform,
            nodata=np.nan,
            compress="lzw",
        ) as dst:
            dst.write(self.data)
            for i, name in enumerate(self.names):
                dst.set_band_description(i + 1, name)
        logger.info(f"Saved {bands} layers to {path}")

    @classmethod
    def load(cls, path: Union[str, Path], names: Optional[list[str]] = None) -> "LayerStack":
        """Read a stack written by save()."""
        with rasterio.open(path) as src:
            data = src.read(masked=True).astype(np.float32).filled(np.nan)
            if names is None:
                names = [d or f"layer_{i + 1}" for i, d in enumerate(src.descriptions)]
            stack = cls(data, src.transform, src.crs, list(names))
        logger.info(f"Loaded {len(stack)} layers of {stack.grid_shape} from {path}")
        return stack


def layer_urls(provider: str) -> list[tuple[str, str]]:
    """(url, name) for every layer of a provider."""
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}. Choose from {list(PROVIDERS.keys())}")
    template, names = PROVIDERS[provider]
    return [(template.format(layer=i + 1), name) for i, name in enumerate(names)]


def read_layer(
    url: Union[str, Path],
    bbox: tuple[float, float, float, float],
    name: Optional[str] = None,
) -> LayerStack:
    """
    Read the part of a raster covering a bounding box.

    Scale and offset stored in the file are applied, nodata becomes NaN.

    Args:
        url: Path or URL of the raster
        bbox: (min_lon, min_lat, max_lon, max_lat)
        name: Band name

    Returns:
        Single-band LayerStack
    """
    with rasterio.open(url) as src:
        window = from_bounds(*bbox, transform=src.transform)
        window = window.round_offsets().round_lengths()
        window = window.intersection(Window(0, 0, src.width, src.height))

        data = src.read(1, window=window, masked=True).astype(np.float32)
        data = data * np.float32(src.scales[0]) + np.float32(src.offsets[0])
        data = data.filled(np.nan)

        layer = LayerStack(
            data,
            src.window_transform(window),
            src.crs or CRS.from_epsg(4326),
            [name or Path(str(url)).stem],
        )
    logger.debug(f"Read {layer.names[0]}: {layer.grid_shape}")
    return layer


def mask_layer(layer: LayerStack, boundary: gpd.GeoDataFrame) -> LayerStack:
    """Return a copy of the stack with every cell outside the boundary set to NaN."""
    inside = geometry_mask(
        boundary.to_crs(layer.crs).geometry,
        out_shape=layer.grid_shape,
        transform=layer.transform,
        invert=True,
    )
    data = layer.data.copy()
    data[:, ~inside] = np.nan
    return LayerStack(data, layer.transform, layer.crs, list(layer.names))


def trim(layer: LayerStack) -> LayerStack:
    """Crop the stack to the smallest window holding data."""
    has_data = ~np.isnan(layer.data).all(axis=0)
    if not has_data.any():
        raise ValueError("Cannot trim a layer without any data")

    rows = np.nonzero(has_data.any(axis=1))[0]
    cols = np.nonzero(has_data.any(axis=0))[0]
    window = Window(cols[0], rows[0], cols[-1] - cols[0] + 1, rows[-1] - rows[0] + 1)

    data = layer.data[:, rows[0]:rows[-1] + 1, cols[0]:cols[-1] + 1].copy()
    return LayerStack(data, window_transform(window, layer.transform), layer.crs, list(layer.names))


def same_grid(a: LayerStack, b: LayerStack) -> bool:
    return a.grid_shape == b.grid_shape and a.transform.almost_equals(b.transform) and a.crs == b.crs


def interpolate(
    layer: LayerStack,
    template: LayerStack,
    resampling: Resampling = Resampling.bilinear,
) -> LayerStack:
    """Resample a stack onto the grid of another one."""
    destination = np.full((len(layer), *template.grid_shape), np.nan, dtype=np.float32)
    reproject(
        source=layer.data,
        destination=destination,
        src_transform=layer.transform,
        src_crs=layer.crs,
        src_nodata=np.nan,
        dst_transform=template.transform,
        dst_crs=template.crs,
        dst_nodata=np.nan,
        resampling=resampling,
    )
    return LayerStack(destination, template.transform, template.crs, list(layer.names))


def stack_layers(layers: list[LayerStack]) -> LayerStack:
    """
    Combine layers on the grid of the first one.

    Layers on another grid are interpolated. A cell missing in any band is
    set to NaN in every band.
    """
    if not layers:
        raise ValueError("Need at least one layer to stack")

    template = layers[0]
    aligned = []
    for layer in layers:
        if not same_grid(layer, template):
            logger.debug(f"Interpolating {layer.names} onto the template grid")
            layer = interpolate(layer, template)
        aligned.append(layer.data)

    data = np.concatenate(aligned, axis=0)
    data[:, np.isnan(data).any(axis=0)] = np.nan
    names = [name for layer in layers for name in layer.names]
    return LayerStack(data, template.transform, template.crs, names)


def download_layers(
    provider: str,
    bbox: tuple[float, float, float, float],
    boundary: gpd.GeoDataFrame,
    layers: Optional[Sequence[int]] = None,
) -> list[LayerStack]:
    """
    Read, mask and trim the layers of a provider.

    Args:
        provider: "chelsa" (BioClim) or "earthenv" (land cover)
        bbox: (min_lon, min_lat, max_lon, max_lat) read from the remote files
        boundary: Polygons outside of which cells are dropped
        layers: 1-based layer numbers (default: all)

    Returns:
        List of single-band LayerStacks
    """
    urls = layer_urls(provider)
    if layers is not None:
        urls = [urls[i - 1] for i in layers]

    logger.info(f"Downloading {len(urls)} {provider} layers...")
    result = []
    for url, name in tqdm(urls, desc=f"Reading {provider}"):
        layer = read_layer(url, bbox, name=name)
        result.append(trim(mask_layer(layer, boundary)))
    return result
