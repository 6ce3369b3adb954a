"""Central configuration for the places-visited pipeline.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Every value can be overridden from environment variables
(optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Input/Output
# ---------------------------------------------------------------------------
# Directory scanned (recursively) for track files. Absolute or relative.
TRACK_DATA_DIR = os.getenv("TRACK_DATA_DIR", "data")

# GeoPackage written at the end of a run.
OUTPUT_FILE = os.getenv("PLACES_OUTPUT_FILE", "data/places.gpkg")

# Layer names picked up by the tiling tool and the viewer. Keep them stable.
POINTS_LAYER = "points"
SMALL_BUFFER_LAYER = "buffer-small"
LARGE_BUFFER_LAYER = "buffer-large"

# Name of the Google Timeline export routed to the timeline adapter.
TIMELINE_FILE_NAME = os.getenv("TIMELINE_FILE_NAME", "location-history.json")


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------
# Files decoded in parallel (one task per file).
INGEST_MAX_WORKERS = _env_int("INGEST_MAX_WORKERS", 4)

# Log ingestion progress every N completed files.
INGEST_PROGRESS_EVERY = _env_int("INGEST_PROGRESS_EVERY", 25)

# Verify the trailing CRC of FIT files. The header CRC is always verified.
FIT_VERIFY_FILE_CRC = _env_bool("FIT_VERIFY_FILE_CRC", True)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------
# Edge (metres) of the latitude-corrected dedup grid cells.
DEDUP_CELL_SIZE_M = _env_float("DEDUP_CELL_SIZE_M", 10.0)

# Points converted to numpy arrays per vectorised step.
DEDUP_CHUNK_SIZE = _env_int("DEDUP_CHUNK_SIZE", 50_000)


# ---------------------------------------------------------------------------
# Buffers & dissolve
# ---------------------------------------------------------------------------
# Disc radii (metres) for the two polygon layers.
SMALL_BUFFER_RADIUS_M = _env_float("SMALL_BUFFER_RADIUS_M", 100.0)
LARGE_BUFFER_RADIUS_M = _env_float("LARGE_BUFFER_RADIUS_M", 1000.0)

# Vertices per disc ring. 48 or more keeps the area within 1% of pi*R^2.
DISC_VERTICES = _env_int("DISC_VERTICES", 64)

# Points handed to the geodesic solver per batch.
DISC_BATCH_SIZE = _env_int("DISC_BATCH_SIZE", 1_000)

# Minimum edge (metres) of the dissolve tiles. The effective edge is at least
# eight radii so a tile holds more than a handful of overlapping discs.
DISSOLVE_TILE_SIZE_M = _env_float("DISSOLVE_TILE_SIZE_M", 20_000.0)

# Topology-preserving simplification applied to the union (metres, 0 = off).
DISSOLVE_SIMPLIFY_TOLERANCE_M = _env_float("DISSOLVE_SIMPLIFY_TOLERANCE_M", 0.0)

# Threads used for the per-tile unions.
DISSOLVE_MAX_WORKERS = _env_int("DISSOLVE_MAX_WORKERS", 4)
