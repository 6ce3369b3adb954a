"""Ingestion service (application layer).

Routes every input file to its format adapter, decodes files in parallel and
reduces the per-file dedup grids into one frozen point set. A file that
cannot be decoded is logged, counted and skipped; it never aborts the run.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from ..adapters import AdapterRegistry, TrackAdapter, default_registry
from ..adapters.base import PathLike
from ..config import DEDUP_CELL_SIZE_M, INGEST_MAX_WORKERS, INGEST_PROGRESS_EVERY
from ..errors import NoInputError, TrackFileError
from ..geometry.grid import DedupGrid
from ..models import IngestionResult

ProgressCallback = Callable[[int, int], None]


def discover_input_files(data_dir: PathLike) -> List[Path]:
    """Return every regular file below ``data_dir``, sorted by path."""

    root = Path(data_dir)
    if not root.is_dir():
        raise NoInputError(f"Input directory not found: {root}")
    return sorted(path for path in root.rglob("*") if path.is_file())


@dataclass(slots=True)
class IngestionServiceConfig:
    registry: AdapterRegistry = field(default_factory=default_registry)
    max_workers: int = INGEST_MAX_WORKERS
    cell_size_m: float = DEDUP_CELL_SIZE_M
    progress_every: int = INGEST_PROGRESS_EVERY
    logger: logging.Logger | None = None


class IngestionService:
    def __init__(self, config: IngestionServiceConfig | None = None):
        self.config = config or IngestionServiceConfig()
        if self.config.max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)

    def process(
        self,
        paths: Sequence[PathLike],
        progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        routed, ignored = self.config.registry.route(paths)
        self._log.info(
            "Found %d track files (%d other files ignored)", len(routed), len(ignored)
        )
        if not routed:
            raise NoInputError("No recognised track files to process")

        merged = DedupGrid(self.config.cell_size_m)
        skipped: List[Path] = []
        parsed = 0
        total = len(routed)
        with ThreadPoolExecutor(
            max_workers=min(self.config.max_workers, total)
        ) as executor:
            future_map = {
                executor.submit(self._ingest_file, path, adapter): path
                for path, adapter in routed
            }
            for done, future in enumerate(as_completed(future_map), start=1):
                path = future_map[future]
                grid, error = future.result()
                if grid is None:
                    skipped.append(path)
                    self._log.warning("Skipping %s: %s", path, error)
                else:
                    merged.merge(grid)
                    parsed += 1
                self._notify(progress, done, total)

        skipped.sort()
        stats = merged.stats()
        result = IngestionResult(
            points=merged.freeze(),
            files_seen=len(routed) + len(ignored),
            files_parsed=parsed,
            files_skipped=len(skipped),
            files_ignored=len(ignored),
            skipped_files=skipped,
            raw_points=stats.seen,
            invalid_points=stats.invalid,
        )
        self._log.info(
            "Parsed %d/%d files (%d skipped): %d points read, %d invalid, "
            "%d unique after dedup (%.2f%% reduction)",
            parsed,
            total,
            len(skipped),
            stats.seen,
            stats.invalid,
            stats.unique,
            stats.removal_percentage,
        )
        if parsed == 0:
            raise NoInputError(f"All {total} track files failed to parse")
        if not result.points:
            raise NoInputError("Track files contained no valid positions")
        return result

    def _ingest_file(
        self, path: Path, adapter: TrackAdapter
    ) -> Tuple[DedupGrid | None, str | None]:
        # Private per-file grid; merged only once the whole file decoded.
        grid = DedupGrid(self.config.cell_size_m)
        try:
            count = grid.add_many(adapter.parse(path))
        except TrackFileError as exc:
            return None, str(exc)
        except OSError as exc:
            return None, f"{exc.__class__.__name__}: {exc}"
        except Exception as exc:  # pragma: no cover
            self._log.error(
                "Unexpected error decoding %s with %s adapter: %s",
                path,
                adapter.name,
                exc,
                exc_info=True,
            )
            return None, f"unexpected {exc.__class__.__name__}"
        self._log.debug(
            "%s: %d points, %d cells (%s adapter)", path.name, count, len(grid), adapter.name
        )
        return grid, None

    def _notify(self, progress: ProgressCallback | None, done: int, total: int) -> None:
        every = max(1, self.config.progress_every)
        if done == total or done % every == 0:
            self._log.info("Ingestion progress: %d/%d files", done, total)
        if progress is None:
            return
        try:
            progress(done, total)
        except Exception:
            self._log.debug("Progress callback failed", exc_info=True)


__all__ = [
    "IngestionService",
    "IngestionServiceConfig",
    "discover_input_files",
]
