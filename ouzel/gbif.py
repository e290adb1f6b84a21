"""
GBIF API utilities for fetching species occurrence data.
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

API_URL = "https://api.gbif.org/v1"


def get_species_key(species_name: str) -> Optional[int]:
    """
    Get GBIF taxon key for a species by name.

    Args:
        species_name: Scientific name of the species (e.g., "Turdus torquatus")

    Returns:
        GBIF taxon key or None if not found
    """
    response = requests.get(f"{API_URL}/species/match", params={"name": species_name})
    response.raise_for_status()
    data = response.json()

    if data.get("matchType") == "NONE":
        return None

    return data.get("usageKey")


def fetch_gbif_occurrences(
    taxon_key: int,
    bbox: tuple[float, float, float, float],
    dataset_key: Optional[str] = None,
    limit: int = 300,
    status: str = "PRESENT",
) -> list[dict]:
    """
    Fetch occurrences from GBIF API with pagination.

    Pages are requested until the number of records matches the count
    reported by the API, or until a page comes back empty.

    Args:
        taxon_key: GBIF taxon key for the species
        bbox: (min_lon, min_lat, max_lon, max_lat)
        dataset_key: Restrict the search to a single GBIF dataset
        limit: Number of records per API request
        status: Value of the occurrenceStatus filter

    Returns:
        List of occurrence dictionaries
    """
    min_lon, min_lat, max_lon, max_lat = bbox
    all_occurrences = []
    offset = 0

    while True:
        params = {
            "taxonKey": taxon_key,
            "occurrenceStatus": status,
            "hasCoordinate": "true",
            "hasGeospatialIssue": "false",
            "decimalLatitude": f"{min_lat},{max_lat}",
            "decimalLongitude": f"{min_lon},{max_lon}",
            "limit": limit,
            "offset": offset,
        }
        if dataset_key is not None:
            params["datasetKey"] = dataset_key

        response = requests.get(f"{API_URL}/occurrence/search", params=params)
        response.raise_for_status()
        data = response.json()

        results = data.get("results", [])
        if not results:
            break

        all_occurrences.extend(results)
        logger.debug(f"Fetched {len(all_occurrences)} / {data.get('count', 0)} occurrences")

        if len(all_occurrences) >= data.get("count", 0):
            break

        offset += limit

    return all_occurrences


def extract_coordinates(occurrences: list[dict]) -> list[tuple[float, float]]:
    """
    Extract (lon, lat) coordinates from GBIF occurrences.

    Args:
        occurrences: List of GBIF occurrence dictionaries

    Returns:
        List of (longitude, latitude) tuples
    """
    coords = []
    for occ in occurrences:
        lat = occ.get("decimalLatitude")
        lon = occ.get("decimalLongitude")
        if lat is not None and lon is not None:
            coords.append((lon, lat))
    return coords


def fetch_presences(
    species_name: str,
    bbox: tuple[float, float, float, float],
    dataset_key: Optional[str] = None,
    limit: int = 300,
) -> list[tuple[float, float]]:
    """Match a species name and return the coordinates of its presence records."""
    taxon_key = get_species_key(species_name)
    if taxon_key is None:
        raise ValueError(f"Species not found in GBIF: {species_name}")
    logger.info(f"GBIF taxon key for {species_name}: {taxon_key}")

    occurrences = fetch_gbif_occurrences(taxon_key, bbox, dataset_key=dataset_key, limit=limit)
    logger.info(f"Found {len(occurrences)} occurrences")
    return extract_coordinates(occurrences)
