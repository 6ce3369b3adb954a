"""Dissolve disc polygons into a minimal polygon set and fill small holes.

Unioning hundreds of thousands of discs in one call is slow and memory hungry,
so the union is built bottom-up:

1. discs are bucketed into square tiles by their centre,
2. every tile is unioned on its own (in a thread pool; GEOS releases the GIL),
3. tile results are merged 2x2 per level until a single geometry remains.

Only neighbouring tiles are combined at each level, which keeps the work
close to linear in the number of discs.
"""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.strtree import STRtree
from shapely.validation import make_valid

from ..config import (
    DISSOLVE_MAX_WORKERS,
    DISSOLVE_SIMPLIFY_TOLERANCE_M,
    DISSOLVE_TILE_SIZE_M,
)
from .buffers import DiscSet, geodesic_area
from .grid import METERS_PER_DEGREE

_log = logging.getLogger(__name__)

TileKey = Tuple[int, int]

# Tiles are at least this many radii wide.
_MIN_TILE_RADII = 8


@dataclass(slots=True)
class DissolvedRegion:
    """Union of one radius's discs, holes below one disc area filled."""

    radius_m: float
    polygons: List[Polygon]
    input_discs: int = 0
    tiles: int = 0
    holes_filled: int = 0
    holes_kept: int = 0
    islands_absorbed: int = 0
    areas_m2: List[float] = field(default_factory=list)

    @property
    def min_hole_area_m2(self) -> float:
        return math.pi * self.radius_m**2

    def __len__(self) -> int:
        return len(self.polygons)


def partition_into_tiles(
    centers: np.ndarray, tile_deg: float
) -> Dict[TileKey, np.ndarray]:
    """Group disc indices by the tile containing their centre."""

    if len(centers) == 0:
        return {}
    cols = np.floor(centers[:, 0] / tile_deg).astype(np.int64)
    rows = np.floor(centers[:, 1] / tile_deg).astype(np.int64)
    buckets: Dict[TileKey, List[int]] = defaultdict(list)
    for index, (row, col) in enumerate(zip(rows.tolist(), cols.tolist())):
        buckets[(row, col)].append(index)
    return {key: np.asarray(indices, dtype=np.int64) for key, indices in buckets.items()}


def merge_tile_levels(
    tiles: Dict[TileKey, BaseGeometry],
    executor: Optional[ThreadPoolExecutor] = None,
) -> BaseGeometry:
    """Merge tile geometries 2x2 per level until one geometry remains."""

    if not tiles:
        return Polygon()
    # Shift indices to start at zero so repeated halving converges.
    min_row = min(row for row, _col in tiles)
    min_col = min(col for _row, col in tiles)
    current = {
        (row - min_row, col - min_col): geometry
        for (row, col), geometry in tiles.items()
    }
    level = 0
    while len(current) > 1:
        groups: Dict[TileKey, List[BaseGeometry]] = defaultdict(list)
        for (row, col), geometry in current.items():
            groups[(row // 2, col // 2)].append(geometry)
        keys = list(groups)
        parts = [groups[key] for key in keys]
        if executor is not None:
            merged = list(executor.map(_union_parts, parts))
        else:
            merged = [_union_parts(part) for part in parts]
        current = dict(zip(keys, merged))
        level += 1
        _log.debug("Merge level %d: %d tiles remain", level, len(current))
    return next(iter(current.values()))


def _union_parts(parts: Sequence[BaseGeometry]) -> BaseGeometry:
    if len(parts) == 1:
        return parts[0]
    return unary_union(list(parts))


def explode_polygons(geometry: BaseGeometry) -> List[Polygon]:
    """Flatten (Multi)Polygons and collections into non-empty polygons."""

    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry] if geometry.area > 0 else []
    polygons: List[Polygon] = []
    if hasattr(geometry, "geoms"):
        for part in geometry.geoms:
            polygons.extend(explode_polygons(part))
    return polygons


def remove_small_holes(
    polygon: Polygon, min_area_m2: float
) -> Tuple[Polygon, List[Polygon], int]:
    """Drop holes smaller than ``min_area_m2``.

    Returns the rebuilt polygon, the filled holes as polygons and the number
    of holes kept.
    """

    kept = []
    filled: List[Polygon] = []
    for ring in polygon.interiors:
        hole = Polygon(ring)
        if geodesic_area(hole) >= min_area_m2:
            kept.append(ring)
        else:
            filled.append(hole)
    if not filled:
        return polygon, filled, len(kept)
    return Polygon(polygon.exterior, kept), filled, len(kept)


def _absorb_islands(
    polygons: List[Polygon], filled_holes: List[Polygon]
) -> Tuple[List[Polygon], int]:
    """Drop polygons lying inside a hole that has just been filled."""

    if not filled_holes or len(polygons) < 2:
        return polygons, 0
    tree = STRtree(filled_holes)
    inner, _holes = tree.query(polygons, predicate="within")
    swallowed = set(np.unique(inner).tolist())
    survivors = [poly for idx, poly in enumerate(polygons) if idx not in swallowed]
    return survivors, len(swallowed)


class PolygonDissolver:
    """Union a :class:`DiscSet` tile by tile and clean up the result."""

    def __init__(
        self,
        tile_size_m: float = DISSOLVE_TILE_SIZE_M,
        max_workers: int = DISSOLVE_MAX_WORKERS,
        simplify_tolerance_m: float = DISSOLVE_SIMPLIFY_TOLERANCE_M,
    ):
        if tile_size_m <= 0:
            raise ValueError("tile_size_m must be positive")
        self.tile_size_m = float(tile_size_m)
        self.max_workers = max(1, max_workers)
        self.simplify_tolerance_m = max(0.0, simplify_tolerance_m)
        self._log = logging.getLogger(self.__class__.__name__)

    def tile_size_deg(self, radius_m: float) -> float:
        edge_m = max(self.tile_size_m, _MIN_TILE_RADII * radius_m)
        return edge_m / METERS_PER_DEGREE

    def dissolve(self, disc_set: DiscSet) -> DissolvedRegion:
        radius_m = disc_set.radius_m
        if len(disc_set) == 0:
            return DissolvedRegion(radius_m=radius_m, polygons=[])
        tiles = partition_into_tiles(disc_set.centers, self.tile_size_deg(radius_m))
        self._log.info(
            "Dissolving %d discs (r=%.0fm) across %d tiles",
            len(disc_set),
            radius_m,
            len(tiles),
        )
        keys = list(tiles)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            tile_unions = list(
                executor.map(
                    lambda key: shapely.union_all(disc_set.discs[tiles[key]]), keys
                )
            )
            union = merge_tile_levels(dict(zip(keys, tile_unions)), executor)
        union = self._clean(union)
        region = self._fill_holes(explode_polygons(union), radius_m)
        region.input_discs = len(disc_set)
        region.tiles = len(tiles)
        self._log.info(
            "r=%.0fm: %d polygons, %d holes filled, %d holes kept, %d islands absorbed",
            radius_m,
            len(region.polygons),
            region.holes_filled,
            region.holes_kept,
            region.islands_absorbed,
        )
        return region

    def _clean(self, geometry: BaseGeometry) -> BaseGeometry:
        if self.simplify_tolerance_m > 0:
            geometry = geometry.simplify(
                self.simplify_tolerance_m / METERS_PER_DEGREE, preserve_topology=True
            )
        if not geometry.is_valid:
            geometry = make_valid(geometry)
        return geometry

    def _fill_holes(self, polygons: List[Polygon], radius_m: float) -> DissolvedRegion:
        min_area = math.pi * radius_m**2
        cleaned: List[Polygon] = []
        filled_holes: List[Polygon] = []
        holes_kept = 0
        for polygon in polygons:
            rebuilt, filled, kept = remove_small_holes(polygon, min_area)
            cleaned.append(rebuilt)
            filled_holes.extend(filled)
            holes_kept += kept
        survivors, absorbed = _absorb_islands(cleaned, filled_holes)
        return DissolvedRegion(
            radius_m=radius_m,
            polygons=survivors,
            holes_filled=len(filled_holes),
            holes_kept=holes_kept,
            islands_absorbed=absorbed,
            areas_m2=[geodesic_area(poly) for poly in survivors],
        )


__all__ = [
    "DissolvedRegion",
    "PolygonDissolver",
    "explode_polygons",
    "merge_tile_levels",
    "partition_into_tiles",
    "remove_small_holes",
]
