from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lon: float
    lat: float
    # Only used for ordering inside an adapter, never for dedup or geometry
    timestamp: Optional[datetime] = field(default=None, compare=False)


PointSet = Tuple[GeoPoint, ...]


@dataclass
class IngestionResult:
    points: PointSet
    files_seen: int = 0
    files_parsed: int = 0
    files_skipped: int = 0
    files_ignored: int = 0
    skipped_files: List[Path] = field(default_factory=list)
    raw_points: int = 0
    invalid_points: int = 0

    @property
    def unique_points(self) -> int:
        return len(self.points)

    @property
    def removed_points(self) -> int:
        return max(self.raw_points - self.invalid_points - self.unique_points, 0)
