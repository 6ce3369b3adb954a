"""GPX track adapter (plain and gzip-compressed)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator
import zlib

import gpxpy
import gpxpy.gpx

from ..errors import ParseError
from ..models import GeoPoint
from .base import TrackAdapter, is_gzipped, open_binary

_log = logging.getLogger(__name__)


class GpxAdapter(TrackAdapter):
    """Read waypoints, track points and route points from GPX documents."""

    name = "gpx"
    suffixes = (".gpx", ".gpx.gz")

    def iter_points(self, path: Path) -> Iterator[GeoPoint]:
        document = self._load(path)
        count = 0
        for point in _walk_points(document):
            count += 1
            yield GeoPoint(
                lon=float(point.longitude),
                lat=float(point.latitude),
                timestamp=point.time,
            )
        _log.debug("Read %d points from %s", count, path.name)

    def _load(self, path: Path) -> gpxpy.gpx.GPX:
        try:
            with open_binary(path) as handle:
                raw = handle.read()
        except (EOFError, zlib.error) as exc:
            raise ParseError(f"truncated gzip stream ({exc})", path) from exc
        except OSError as exc:
            if is_gzipped(path):
                raise ParseError(f"unreadable gzip stream ({exc})", path) from exc
            raise
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError("document is not valid UTF-8", path) from exc
        try:
            return gpxpy.parse(text)
        except gpxpy.gpx.GPXException as exc:
            raise ParseError(f"malformed GPX ({exc})", path) from exc


def _walk_points(document: gpxpy.gpx.GPX) -> Iterator[Any]:
    yield from document.waypoints
    for track in document.tracks:
        for segment in track.segments:
            yield from segment.points
    for route in document.routes:
        yield from route.points


__all__ = ["GpxAdapter"]
