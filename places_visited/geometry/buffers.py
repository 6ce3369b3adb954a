"""Geodesic disc polygons around unique points."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from pyproj import Geod
import shapely
from shapely.affinity import translate
from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from ..config import DISC_BATCH_SIZE, DISC_VERTICES
from ..models import GeoPoint

_log = logging.getLogger(__name__)

WGS84_GEOD = Geod(ellps="WGS84")
WORLD_BOUNDS = box(-180.0, -90.0, 180.0, 90.0)

GeometryArray = NDArray[np.object_]


@dataclass(slots=True)
class DiscSet:
    """All disc polygons for one radius, unmerged."""

    radius_m: float
    centers: NDArray[np.float64]  # shape (n, 2): lon, lat
    discs: GeometryArray

    def __len__(self) -> int:
        return len(self.discs)

    @property
    def disc_area_m2(self) -> float:
        return math.pi * self.radius_m**2


def disc_rings(
    lons: NDArray[np.float64],
    lats: NDArray[np.float64],
    radius_m: float,
    vertices: int = DISC_VERTICES,
) -> NDArray[np.float64]:
    """Return ring coordinates of shape ``(n, vertices, 2)``.

    Each vertex is found by walking ``radius_m`` along a geodesic from the
    centre, so the ring is accurate in metres at every latitude. Longitudes
    are unwrapped around the centre so a ring never jumps across the
    antimeridian.
    """

    if radius_m <= 0:
        raise ValueError("radius_m must be positive")
    if vertices < 3:
        raise ValueError("vertices must be at least 3")
    count = len(lons)
    azimuths = np.linspace(0.0, 360.0, num=vertices, endpoint=False)
    # Clockwise azimuths; reverse so rings come out counter-clockwise.
    azimuths = azimuths[::-1]
    center_lons = np.repeat(np.asarray(lons, dtype=float), vertices)
    center_lats = np.repeat(np.asarray(lats, dtype=float), vertices)
    ring_lons, ring_lats, _back = WGS84_GEOD.fwd(
        center_lons,
        center_lats,
        np.tile(azimuths, count),
        np.full(count * vertices, float(radius_m)),
    )
    ring_lons = np.asarray(ring_lons, dtype=float)
    ring_lats = np.asarray(ring_lats, dtype=float)
    ring_lons = center_lons + ((ring_lons - center_lons + 180.0) % 360.0 - 180.0)
    coords = np.stack((ring_lons, ring_lats), axis=-1)
    return coords.reshape(count, vertices, 2)


def wrap_antimeridian(geometry: BaseGeometry) -> BaseGeometry:
    """Fold the parts of ``geometry`` beyond +/-180 degrees back into range.

    The result is split along the antimeridian, so a disc straddling it
    becomes a MultiPolygon with one part on each side.
    """

    min_lon, _min_lat, max_lon, _max_lat = geometry.bounds
    if min_lon >= -180.0 and max_lon <= 180.0:
        return geometry
    pieces = [geometry.intersection(WORLD_BOUNDS)]
    if max_lon > 180.0:
        pieces.append(translate(geometry, xoff=-360.0).intersection(WORLD_BOUNDS))
    if min_lon < -180.0:
        pieces.append(translate(geometry, xoff=360.0).intersection(WORLD_BOUNDS))
    return unary_union([piece for piece in pieces if not piece.is_empty])


def disc_polygon(
    point: GeoPoint, radius_m: float, vertices: int = DISC_VERTICES
) -> BaseGeometry:
    rings = disc_rings(
        np.asarray([point.lon], dtype=float),
        np.asarray([point.lat], dtype=float),
        radius_m,
        vertices,
    )
    return wrap_antimeridian(Polygon(rings[0]))


def geodesic_area(geometry: BaseGeometry) -> float:
    """Absolute area of a lon/lat polygon on the WGS84 ellipsoid (m^2)."""

    area, _perimeter = WGS84_GEOD.geometry_area_perimeter(geometry)
    return abs(area)


class BufferBuilder:
    """Build one disc polygon per point for a fixed radius."""

    def __init__(
        self,
        radius_m: float,
        vertices: int = DISC_VERTICES,
        batch_size: int = DISC_BATCH_SIZE,
    ):
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        self.radius_m = float(radius_m)
        self.vertices = vertices
        self.batch_size = max(1, batch_size)
        self._log = logging.getLogger(self.__class__.__name__)

    def build(self, points: Sequence[GeoPoint]) -> DiscSet:
        centers = np.asarray([(p.lon, p.lat) for p in points], dtype=float).reshape(
            -1, 2
        )
        batches = []
        for start in range(0, len(centers), self.batch_size):
            batch = centers[start : start + self.batch_size]
            rings = disc_rings(batch[:, 0], batch[:, 1], self.radius_m, self.vertices)
            polygons = shapely.polygons(rings)
            ring_lons = rings[:, :, 0]
            crossing = (ring_lons.max(axis=1) > 180.0) | (ring_lons.min(axis=1) < -180.0)
            for index in np.flatnonzero(crossing):
                polygons[index] = wrap_antimeridian(polygons[index])
            batches.append(polygons)
        discs = (
            np.concatenate(batches) if batches else np.empty(0, dtype=object)
        )
        self._log.info(
            "Built %d discs of %.0fm radius (%d vertices each)",
            len(discs),
            self.radius_m,
            self.vertices,
        )
        return DiscSet(radius_m=self.radius_m, centers=centers, discs=discs)


__all__ = [
    "BufferBuilder",
    "DiscSet",
    "WGS84_GEOD",
    "disc_polygon",
    "disc_rings",
    "geodesic_area",
    "wrap_antimeridian",
]
