"""GeoPackage writer (and reader) for the point and buffer layers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Sequence

import geopandas as gpd
import pyogrio

from .adapters.base import PathLike
from .config import POINTS_LAYER
from .errors import OutputWriteError
from .geometry.dissolve import DissolvedRegion
from .models import GeoPoint

CRS_WGS84 = "EPSG:4326"
DRIVER = "GPKG"
RADIUS_COLUMN = "radius_m"
AREA_COLUMN = "area_m2"

LOGGER = logging.getLogger(__name__)

__all__ = [
    "CRS_WGS84",
    "layer_counts",
    "points_frame",
    "read_layers",
    "region_frame",
    "write_layers",
]


def points_frame(points: Sequence[GeoPoint]) -> gpd.GeoDataFrame:
    lons = [p.lon for p in points]
    lats = [p.lat for p in points]
    return gpd.GeoDataFrame(
        geometry=gpd.points_from_xy(lons, lats), crs=CRS_WGS84
    )


def region_frame(region: DissolvedRegion) -> gpd.GeoDataFrame:
    areas = region.areas_m2 or [0.0] * len(region.polygons)
    return gpd.GeoDataFrame(
        {
            RADIUS_COLUMN: [region.radius_m] * len(region.polygons),
            AREA_COLUMN: areas,
        },
        geometry=list(region.polygons),
        crs=CRS_WGS84,
    )


def _partial_path(path: Path) -> Path:
    # Keep the .gpkg extension so the driver does not complain.
    return path.with_name(f".{path.stem}.partial{path.suffix or '.gpkg'}")


def write_layers(
    output_path: PathLike,
    points: Sequence[GeoPoint],
    regions: Mapping[str, DissolvedRegion],
    points_layer: str = POINTS_LAYER,
) -> Path:
    """Write the point layer and one polygon layer per region.

    The GeoPackage is assembled next to the destination and moved into place
    only once every layer was written.

    Raises:
        OutputWriteError: If any layer cannot be serialized.
    """

    path = Path(output_path)
    partial = _partial_path(path)
    frames: Dict[str, gpd.GeoDataFrame] = {points_layer: points_frame(points)}
    for name, region in regions.items():
        if name in frames:
            raise OutputWriteError(f"Duplicate layer name: {name}")
        frames[name] = region_frame(region)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if partial.exists():
            partial.unlink()
        for name, frame in frames.items():
            frame.to_file(partial, layer=name, driver=DRIVER, engine="pyogrio")
            LOGGER.info("Wrote layer %s (%d features)", name, len(frame))
        partial.replace(path)
    except Exception as exc:
        if partial.exists():
            try:
                partial.unlink()
            except OSError:
                LOGGER.debug("Could not remove partial output %s", partial)
        raise OutputWriteError(f"Failed to write {path}: {exc}") from exc
    LOGGER.info("Saved %d layers to %s", len(frames), path)
    return path


def read_layers(path: PathLike) -> Dict[str, gpd.GeoDataFrame]:
    """Read every layer of a GeoPackage written by :func:`write_layers`."""

    names = [str(row[0]) for row in pyogrio.list_layers(path)]
    return {name: gpd.read_file(path, layer=name, engine="pyogrio") for name in names}


def layer_counts(path: PathLike) -> Dict[str, int]:
    return {name: len(frame) for name, frame in read_layers(path).items()}
