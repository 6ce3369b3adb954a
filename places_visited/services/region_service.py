"""Buffer + dissolve orchestration for the polygon layers."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Dict, Mapping, Sequence

from ..config import (
    DISC_BATCH_SIZE,
    DISC_VERTICES,
    DISSOLVE_MAX_WORKERS,
    DISSOLVE_SIMPLIFY_TOLERANCE_M,
    DISSOLVE_TILE_SIZE_M,
    LARGE_BUFFER_LAYER,
    LARGE_BUFFER_RADIUS_M,
    SMALL_BUFFER_LAYER,
    SMALL_BUFFER_RADIUS_M,
)
from ..geometry.buffers import BufferBuilder
from ..geometry.dissolve import DissolvedRegion, PolygonDissolver
from ..models import GeoPoint


def default_radii() -> Dict[str, float]:
    return {
        SMALL_BUFFER_LAYER: SMALL_BUFFER_RADIUS_M,
        LARGE_BUFFER_LAYER: LARGE_BUFFER_RADIUS_M,
    }


@dataclass(slots=True)
class RegionServiceConfig:
    disc_vertices: int = DISC_VERTICES
    disc_batch_size: int = DISC_BATCH_SIZE
    tile_size_m: float = DISSOLVE_TILE_SIZE_M
    dissolve_workers: int = DISSOLVE_MAX_WORKERS
    simplify_tolerance_m: float = DISSOLVE_SIMPLIFY_TOLERANCE_M


class RegionService:
    """Build one dissolved region per named radius.

    Every radius runs in its own worker and reads only the frozen point set,
    so the pipelines share no intermediate state.
    """

    def __init__(self, config: RegionServiceConfig | None = None):
        self.config = config or RegionServiceConfig()
        self._log = logging.getLogger(self.__class__.__name__)

    def build_region(
        self, points: Sequence[GeoPoint], radius_m: float
    ) -> DissolvedRegion:
        builder = BufferBuilder(
            radius_m,
            vertices=self.config.disc_vertices,
            batch_size=self.config.disc_batch_size,
        )
        dissolver = PolygonDissolver(
            tile_size_m=self.config.tile_size_m,
            max_workers=self.config.dissolve_workers,
            simplify_tolerance_m=self.config.simplify_tolerance_m,
        )
        return dissolver.dissolve(builder.build(points))

    def process(
        self,
        points: Sequence[GeoPoint],
        radii: Mapping[str, float] | None = None,
    ) -> Dict[str, DissolvedRegion]:
        radii = dict(radii) if radii is not None else default_radii()
        if not radii:
            return {}
        self._log.info(
            "Building %d polygon layers for %d points: %s",
            len(radii),
            len(points),
            ", ".join(f"{name}={radius:.0f}m" for name, radius in radii.items()),
        )
        with ThreadPoolExecutor(max_workers=len(radii)) as executor:
            futures = {
                name: executor.submit(self.build_region, points, radius)
                for name, radius in radii.items()
            }
            # Result order follows the requested layer order.
            return {name: future.result() for name, future in futures.items()}


__all__ = ["RegionService", "RegionServiceConfig", "default_radii"]
