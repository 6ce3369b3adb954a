"""Point deduplication, disc buffers and polygon dissolve."""

from .buffers import BufferBuilder, DiscSet, disc_polygon, geodesic_area
from .dissolve import DissolvedRegion, PolygonDissolver
from .grid import DedupGrid, DedupStats

__all__ = [
    "BufferBuilder",
    "DedupGrid",
    "DedupStats",
    "DiscSet",
    "DissolvedRegion",
    "PolygonDissolver",
    "disc_polygon",
    "geodesic_area",
]
