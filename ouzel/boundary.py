"""
Country boundaries from GADM.
"""

import logging

import geopandas as gpd
from shapely.ops import unary_union

from .config import GADM_URL

logger = logging.getLogger(__name__)


def load_boundary(iso: str = "CHE") -> gpd.GeoDataFrame:
    """
    Download the level-0 (national) GADM boundary for a country.

    Args:
        iso: ISO 3166-1 alpha-3 country code

    Returns:
        GeoDataFrame in EPSG:4326 with one row per polygon
    """
    url = GADM_URL.format(iso=iso.upper())
    logger.info(f"Loading boundary from {url}")
    boundary = gpd.read_file(url)
    if boundary.crs is None:
        boundary = boundary.set_crs("EPSG:4326")
    return boundary.to_crs("EPSG:4326")


def points_within(
    points: list[tuple[float, float]],
    boundary: gpd.GeoDataFrame,
) -> list[tuple[float, float]]:
    """Keep the (lon, lat) points that fall inside the boundary."""
    if not points:
        return []
    lons, lats = zip(*points)
    geoms = gpd.GeoSeries(gpd.points_from_xy(lons, lats), crs="EPSG:4326")
    inside = geoms.within(unary_union(boundary.to_crs("EPSG:4326").geometry)).to_numpy()
    return [p for p, keep in zip(points, inside) if keep]
