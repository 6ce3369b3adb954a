"""Pipeline entry point: tracks in, three map layers out."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
import logging
from pathlib import Path
import sys
import time
from typing import Dict, List, Optional, Sequence

from .adapters.base import PathLike
from .config import (
    INGEST_MAX_WORKERS,
    LARGE_BUFFER_LAYER,
    LARGE_BUFFER_RADIUS_M,
    OUTPUT_FILE,
    POINTS_LAYER,
    SMALL_BUFFER_LAYER,
    SMALL_BUFFER_RADIUS_M,
    TRACK_DATA_DIR,
)
from .errors import NoInputError, OutputWriteError
from .geometry.dissolve import DissolvedRegion
from .layer_writer import write_layers
from .models import IngestionResult
from .services import (
    IngestionService,
    IngestionServiceConfig,
    RegionService,
    discover_input_files,
)

EXIT_OK = 0
EXIT_NO_INPUT = 1
EXIT_OUTPUT_FAILED = 2


@dataclass
class RunSummary:
    output_path: Path
    ingestion: IngestionResult
    regions: Dict[str, DissolvedRegion] = field(default_factory=dict)
    elapsed_s: float = 0.0

    def layer_sizes(self) -> Dict[str, int]:
        sizes = {POINTS_LAYER: self.ingestion.unique_points}
        sizes.update({name: len(region) for name, region in self.regions.items()})
        return sizes


def _setup_logging(verbose: bool = False) -> None:
    root = logging.getLogger()
    if not root.hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )
    elif verbose:
        # Handlers installed by the caller stay; only the threshold is lowered.
        root.setLevel(logging.DEBUG)


def run_pipeline(
    data_dir: PathLike = TRACK_DATA_DIR,
    output_path: PathLike = OUTPUT_FILE,
    *,
    small_radius_m: float = SMALL_BUFFER_RADIUS_M,
    large_radius_m: float = LARGE_BUFFER_RADIUS_M,
    max_workers: int = INGEST_MAX_WORKERS,
    paths: Optional[Sequence[PathLike]] = None,
    region_service: RegionService | None = None,
) -> RunSummary:
    """Run discovery, ingestion, buffering/dissolve and writing.

    Args:
        data_dir: Directory searched recursively for track files. Ignored
            when ``paths`` is given.
        output_path: GeoPackage to (over)write.
        small_radius_m: Disc radius of the ``buffer-small`` layer.
        large_radius_m: Disc radius of the ``buffer-large`` layer.
        max_workers: Files decoded in parallel.
        paths: Explicit input files, bypassing discovery.
        region_service: Optional pre-configured :class:`RegionService`.

    Raises:
        NoInputError: Missing directory or nothing usable to process.
        OutputWriteError: The GeoPackage could not be written.
    """

    started = time.perf_counter()
    if paths is None:
        logging.info("Scanning %s for track files ...", data_dir)
        paths = discover_input_files(data_dir)
    ingestion = IngestionService(
        IngestionServiceConfig(max_workers=max_workers)
    ).process(paths)

    regions = (region_service or RegionService()).process(
        ingestion.points,
        {SMALL_BUFFER_LAYER: small_radius_m, LARGE_BUFFER_LAYER: large_radius_m},
    )
    written = write_layers(output_path, ingestion.points, regions)
    summary = RunSummary(
        output_path=written,
        ingestion=ingestion,
        regions=regions,
        elapsed_s=time.perf_counter() - started,
    )
    _log_summary(summary)
    return summary


def _log_summary(summary: RunSummary) -> None:
    ingestion = summary.ingestion
    logging.info(
        "Files: %d parsed, %d skipped, %d ignored",
        ingestion.files_parsed,
        ingestion.files_skipped,
        ingestion.files_ignored,
    )
    for path in ingestion.skipped_files:
        logging.info("  skipped: %s", path)
    logging.info(
        "Points: %d read, %d invalid dropped, %d duplicates removed, %d kept",
        ingestion.raw_points,
        ingestion.invalid_points,
        ingestion.removed_points,
        ingestion.unique_points,
    )
    for name, size in summary.layer_sizes().items():
        logging.info("Layer %s: %d features", name, size)
    logging.info(
        "Results saved to %s in %.1fs", summary.output_path, summary.elapsed_s
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build point and buffer layers of places visited from GPX, FIT and Timeline exports.",
    )
    parser.add_argument(
        "--data-dir",
        default=TRACK_DATA_DIR,
        help=f"Directory with track files (default: {TRACK_DATA_DIR})",
    )
    parser.add_argument(
        "--output",
        default=OUTPUT_FILE,
        help=f"GeoPackage to write (default: {OUTPUT_FILE})",
    )
    parser.add_argument(
        "--small-radius",
        type=float,
        default=SMALL_BUFFER_RADIUS_M,
        help="Radius in metres of the buffer-small layer",
    )
    parser.add_argument(
        "--large-radius",
        type=float,
        default=LARGE_BUFFER_RADIUS_M,
        help="Radius in metres of the buffer-large layer",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=INGEST_MAX_WORKERS,
        help="Files decoded in parallel",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.small_radius <= 0 or args.large_radius <= 0:
        parser.error("radii must be positive")
    _setup_logging(args.verbose)
    try:
        run_pipeline(
            args.data_dir,
            args.output,
            small_radius_m=args.small_radius,
            large_radius_m=args.large_radius,
            max_workers=max(1, args.workers),
        )
    except NoInputError as exc:
        logging.error("Nothing to process: %s", exc)
        return EXIT_NO_INPUT
    except OutputWriteError as exc:
        logging.error("Output failed: %s", exc)
        return EXIT_OUTPUT_FAILED
    return EXIT_OK


def cli() -> None:  # pragma: no cover - thin wrapper
    sys.exit(main())
