"""Latitude-corrected spatial grid used to deduplicate points."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import Dict, Iterable, Iterator, Tuple

import numpy as np
from numpy.typing import NDArray

from ..config import DEDUP_CELL_SIZE_M, DEDUP_CHUNK_SIZE
from ..models import GeoPoint, PointSet

METERS_PER_DEGREE = 111_320.0
# Keeps longitude scaling finite in the rows touching the poles.
_MIN_COS_LAT = 1e-6

CellKey = Tuple[int, int]


@dataclass(frozen=True, slots=True)
class DedupStats:
    seen: int
    invalid: int
    unique: int

    @property
    def removed(self) -> int:
        return max(self.seen - self.invalid - self.unique, 0)

    @property
    def removal_percentage(self) -> float:
        valid = self.seen - self.invalid
        if valid <= 0:
            return 0.0
        return self.removed / valid * 100.0


def valid_position_mask(
    lons: NDArray[np.float64], lats: NDArray[np.float64]
) -> NDArray[np.bool_]:
    """Return True where a lon/lat pair is a usable WGS84 position."""

    with np.errstate(invalid="ignore"):
        return (
            np.isfinite(lons)
            & np.isfinite(lats)
            & (np.abs(lats) <= 90.0)
            & (np.abs(lons) <= 180.0)
        )


class DedupGrid:
    """Map of grid cells to one representative point each.

    Rows are ``cell_size_m`` tall in latitude. Inside a row, longitude is
    scaled by the cosine of the row's centre latitude, so every cell is
    roughly ``cell_size_m`` square on the ground.

    The representative of a cell is the point with the smallest
    ``(lon, lat)``. That choice does not depend on input order, so merging
    partial grids in any order gives the same result.
    """

    def __init__(
        self,
        cell_size_m: float = DEDUP_CELL_SIZE_M,
        chunk_size: int = DEDUP_CHUNK_SIZE,
    ):
        if cell_size_m <= 0:
            raise ValueError("cell_size_m must be positive")
        self.cell_size_m = float(cell_size_m)
        self.chunk_size = max(1, int(chunk_size))
        self._cell_deg = self.cell_size_m / METERS_PER_DEGREE
        self._cells: Dict[CellKey, Tuple[float, float]] = {}
        self.seen = 0
        self.invalid = 0

    def __len__(self) -> int:
        return len(self._cells)

    def cell_key(self, lon: float, lat: float) -> CellKey:
        rows, cols = self.cell_keys(
            np.asarray([lon], dtype=float), np.asarray([lat], dtype=float)
        )
        return int(rows[0]), int(cols[0])

    def cell_keys(
        self, lons: NDArray[np.float64], lats: NDArray[np.float64]
    ) -> Tuple[NDArray[np.int64], NDArray[np.int64]]:
        """Vectorised :meth:`cell_key` for arrays of valid positions."""

        rows = np.floor(lats / self._cell_deg)
        scale = np.maximum(
            np.abs(np.cos(np.radians((rows + 0.5) * self._cell_deg))), _MIN_COS_LAT
        )
        cols = np.floor(lons * scale / self._cell_deg)
        return rows.astype(np.int64), cols.astype(np.int64)

    def add(self, point: GeoPoint) -> bool:
        """Add one point; return True when it became a cell representative."""

        replaced = self._add_arrays(
            np.asarray([point.lon], dtype=float), np.asarray([point.lat], dtype=float)
        )
        return replaced > 0

    def add_many(self, points: Iterable[GeoPoint]) -> int:
        """Consume ``points`` in vectorised chunks; return the number consumed."""

        consumed = 0
        iterator = iter(points)
        while True:
            chunk = list(islice(iterator, self.chunk_size))
            if not chunk:
                break
            lons = np.fromiter((p.lon for p in chunk), dtype=float, count=len(chunk))
            lats = np.fromiter((p.lat for p in chunk), dtype=float, count=len(chunk))
            self._add_arrays(lons, lats)
            consumed += len(chunk)
        return consumed

    def _add_arrays(
        self, lons: NDArray[np.float64], lats: NDArray[np.float64]
    ) -> int:
        self.seen += len(lons)
        mask = valid_position_mask(lons, lats)
        self.invalid += int(len(lons) - np.count_nonzero(mask))
        lons, lats = lons[mask], lats[mask]
        if len(lons) == 0:
            return 0
        rows, cols = self.cell_keys(lons, lats)
        cells = self._cells
        replaced = 0
        for row, col, lon, lat in zip(
            rows.tolist(), cols.tolist(), lons.tolist(), lats.tolist()
        ):
            key = (row, col)
            current = cells.get(key)
            if current is None or (lon, lat) < current:
                cells[key] = (lon, lat)
                replaced += 1
        return replaced

    def merge(self, other: "DedupGrid") -> "DedupGrid":
        """Fold ``other`` into this grid and return ``self``."""

        if other.cell_size_m != self.cell_size_m:
            raise ValueError("cannot merge grids with different cell sizes")
        cells = self._cells
        for key, candidate in other._cells.items():
            current = cells.get(key)
            if current is None or candidate < current:
                cells[key] = candidate
        self.seen += other.seen
        self.invalid += other.invalid
        return self

    def stats(self) -> DedupStats:
        return DedupStats(seen=self.seen, invalid=self.invalid, unique=len(self._cells))

    def freeze(self) -> PointSet:
        """Return the unique points sorted by ``(lon, lat)``."""

        return tuple(GeoPoint(lon, lat) for lon, lat in sorted(self._cells.values()))

    def __iter__(self) -> Iterator[GeoPoint]:
        return iter(self.freeze())


__all__ = [
    "CellKey",
    "DedupGrid",
    "DedupStats",
    "METERS_PER_DEGREE",
    "valid_position_mask",
]
