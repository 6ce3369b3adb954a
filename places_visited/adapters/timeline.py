"""Google Timeline JSON adapter.

Three export shapes are understood, all streamed with ``ijson`` so a
multi-gigabyte export never has to fit in memory:

* ``{"locations": [{"latitudeE7": ..., "longitudeE7": ...}, ...]}`` (Takeout)
* a root array whose records hold ``"geo:lat,lon"`` strings (on-device export)
* ``{"semanticSegments": [...]}`` with ``"lat°, lon°"`` point strings

E7 values are integers scaled by 1e7.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import re
from typing import Any, Iterator, Optional

import ijson

from ..config import TIMELINE_FILE_NAME
from ..errors import ParseError
from ..models import GeoPoint
from .base import TrackAdapter, open_binary

_log = logging.getLogger(__name__)

E7 = 1e7
_GEO_PREFIX = "geo:"
_DEGREE_POINT = re.compile(r"^\s*(-?\d+(?:\.\d+)?)°,\s*(-?\d+(?:\.\d+)?)°\s*$")
_E7_KEYS = (("latitudeE7", "longitudeE7"), ("latE7", "lngE7"))


class TimelineAdapter(TrackAdapter):
    """Extract every location recorded in a Timeline export."""

    name = "timeline"

    def __init__(self, file_name: str = TIMELINE_FILE_NAME):
        self.file_name = file_name.lower()

    def matches(self, path: str | Path) -> bool:
        return Path(path).name.lower() == self.file_name

    def iter_points(self, path: Path) -> Iterator[GeoPoint]:
        count = 0
        try:
            with open_binary(path) as handle:
                for value in _top_level_values(handle):
                    for point in _extract(value, path):
                        count += 1
                        yield point
        except ijson.JSONError as exc:
            raise ParseError(f"malformed JSON ({exc})", path) from exc
        except UnicodeDecodeError as exc:
            raise ParseError(f"invalid UTF-8 ({exc.reason})", path) from exc
        _log.debug("Read %d timeline locations from %s", count, path.name)


def _top_level_values(handle: Any) -> Iterator[Any]:
    """Yield the items of a root array, or the values of a root object."""

    first = _peek_first_char(handle)
    if first == b"[":
        yield from ijson.items(handle, "item", use_float=True)
    elif first == b"{":
        for _key, value in ijson.kvitems(handle, "", use_float=True):
            yield value
    else:
        raise ijson.JSONError("document must be a JSON object or array")


def _peek_first_char(handle: Any) -> bytes:
    prefix = handle.read(64)
    handle.seek(0)
    stripped = prefix.lstrip(b"\xef\xbb\xbf \t\r\n")
    return stripped[:1]


def _extract(value: Any, path: Path) -> Iterator[GeoPoint]:
    if isinstance(value, dict):
        point = _from_e7_record(value, path)
        if point is not None:
            yield point
            return
        for child in value.values():
            yield from _extract(child, path)
    elif isinstance(value, list):
        for child in value:
            yield from _extract(child, path)
    elif isinstance(value, str):
        point = _from_string(value, path)
        if point is not None:
            yield point


def _from_e7_record(record: dict, path: Path) -> Optional[GeoPoint]:
    for lat_key, lon_key in _E7_KEYS:
        if lat_key in record and lon_key in record:
            lat_raw, lon_raw = record[lat_key], record[lon_key]
            if not _is_number(lat_raw) or not _is_number(lon_raw):
                raise ParseError(
                    f"non-numeric {lat_key}/{lon_key} values: {lat_raw!r}, {lon_raw!r}",
                    path,
                )
            return GeoPoint(
                lon=lon_raw / E7,
                lat=lat_raw / E7,
                timestamp=_parse_timestamp(record),
            )
    return None


def _from_string(value: str, path: Path) -> Optional[GeoPoint]:
    if value.startswith(_GEO_PREFIX):
        parts = value[len(_GEO_PREFIX) :].split(",")
        if len(parts) != 2:
            raise ParseError(f"malformed geo string {value!r}", path)
        try:
            lat, lon = float(parts[0]), float(parts[1])
        except ValueError as exc:
            raise ParseError(f"malformed geo string {value!r}", path) from exc
        return GeoPoint(lon=lon, lat=lat)
    match = _DEGREE_POINT.match(value)
    if match:
        return GeoPoint(lon=float(match.group(2)), lat=float(match.group(1)))
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_timestamp(record: dict) -> Optional[datetime]:
    millis = record.get("timestampMs")
    if millis is not None:
        try:
            return datetime.fromtimestamp(int(millis) / 1000.0, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return None
    text = record.get("timestamp")
    if isinstance(text, str):
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


__all__ = ["E7", "TimelineAdapter"]
