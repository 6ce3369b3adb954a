"""Global pytest fixtures & helpers.

Adds project root to path and provides factories that write small GPX, FIT
and Timeline files so adapter, ingestion and pipeline tests share one way of
building input data.
"""
from __future__ import annotations

import gzip
import json
import os
import struct
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from places_visited.adapters.fit import fit_crc
from places_visited.geometry.buffers import WGS84_GEOD

LonLat = Tuple[float, float]

FIT_INVALID_SINT32 = 0x7FFFFFFF
# Seconds since the FIT epoch (1989-12-31) for 2021-09-01T00:00:00Z.
FIT_START = 999_388_800


# --- Factory helpers -------------------------------------------------
def offset_point(lon: float, lat: float, azimuth: float, distance_m: float) -> LonLat:
    """Return the position ``distance_m`` away from (lon, lat) along ``azimuth``."""
    new_lon, new_lat, _back = WGS84_GEOD.fwd(lon, lat, azimuth, distance_m)
    return float(new_lon), float(new_lat)


def make_gpx(
    track: Sequence[LonLat],
    waypoints: Sequence[LonLat] = (),
    route: Sequence[LonLat] = (),
) -> str:
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">',
    ]
    for lon, lat in waypoints:
        parts.append(f'<wpt lat="{lat}" lon="{lon}"><name>wp</name></wpt>')
    if route:
        parts.append("<rte>")
        parts.extend(f'<rtept lat="{lat}" lon="{lon}"></rtept>' for lon, lat in route)
        parts.append("</rte>")
    if track:
        parts.append("<trk><name>run</name><trkseg>")
        for index, (lon, lat) in enumerate(track):
            parts.append(
                f'<trkpt lat="{lat}" lon="{lon}">'
                f"<time>2021-09-01T08:00:{index % 60:02d}Z</time></trkpt>"
            )
        parts.append("</trkseg></trk>")
    parts.append("</gpx>")
    return "\n".join(parts)


def to_semicircles(degrees: float) -> int:
    return int(round(degrees * 2**31 / 180.0))


def _definition(
    local_type: int,
    global_number: int,
    fields: Sequence[Tuple[int, int, int]],
    big_endian: bool = False,
    developer_fields: Sequence[Tuple[int, int, int]] = (),
) -> bytes:
    header = 0x40 | local_type
    if developer_fields:
        header |= 0x20
    body = struct.pack(
        ">BBHB" if big_endian else "<BBHB",
        0,
        1 if big_endian else 0,
        global_number,
        len(fields),
    )
    for number, size, base_type in fields:
        body += bytes((number, size, base_type))
    if developer_fields:
        body += bytes((len(developer_fields),))
        for number, size, index in developer_fields:
            body += bytes((number, size, index))
    return bytes((header,)) + body


def make_fit_records(
    points: Sequence[Optional[LonLat]],
    start: int = FIT_START,
    big_endian: bool = False,
    compressed: bool = False,
    developer_bytes: int = 0,
) -> bytes:
    """Encode a file_id message followed by one record message per point.

    ``None`` entries become records with invalid (unset) coordinates. With
    ``compressed`` only the first record carries a full timestamp; the rest
    use compressed timestamp headers one second apart.
    """
    order = ">" if big_endian else "<"
    records = _definition(0, 0, [(0, 1, 0x00), (4, 4, 0x86)], big_endian)
    records += bytes((0x00,)) + struct.pack(order + "BI", 4, start)

    developer = [(0, developer_bytes, 0)] if developer_bytes else []
    records += _definition(
        1,
        20,
        [(253, 4, 0x86), (0, 4, 0x85), (1, 4, 0x85), (3, 1, 0x02)],
        big_endian,
        developer,
    )
    if compressed:
        records += _definition(2, 20, [(0, 4, 0x85), (1, 4, 0x85)], big_endian)

    for index, point in enumerate(points):
        if point is None:
            lat_raw = lon_raw = FIT_INVALID_SINT32
        else:
            lat_raw, lon_raw = to_semicircles(point[1]), to_semicircles(point[0])
        timestamp = start + index
        if compressed and index > 0:
            header = 0x80 | (2 << 5) | (timestamp & 0x1F)
            records += bytes((header,)) + struct.pack(order + "ii", lat_raw, lon_raw)
            continue
        records += bytes((0x01,)) + struct.pack(
            order + "IiiB", timestamp, lat_raw, lon_raw, 120
        )
        records += bytes(developer_bytes)
    return records


def make_fit(records: bytes, header_size: int = 14) -> bytes:
    """Wrap ``records`` in a FIT header and trailing file CRC."""
    header = struct.pack("<BBHI4s", header_size, 0x20, 2132, len(records), b".FIT")
    if header_size == 14:
        header += struct.pack("<H", fit_crc(header))
    body = header + records
    return body + struct.pack("<H", fit_crc(body))


def fit_bytes(points: Sequence[Optional[LonLat]], **kwargs) -> bytes:
    return make_fit(make_fit_records(points, **kwargs))


def corrupt_fit_header(data: bytes) -> bytes:
    """Flip a bit of the profile version so the header CRC no longer matches."""
    corrupted = bytearray(data)
    corrupted[2] ^= 0x01
    return bytes(corrupted)


def line_of_points(
    lon: float, lat: float, count: int, spacing_m: float, azimuth: float = 90.0
) -> List[LonLat]:
    return [offset_point(lon, lat, azimuth, i * spacing_m) for i in range(count)]


def circle_of_points(
    lon: float, lat: float, radius_m: float, count: int
) -> List[LonLat]:
    return [offset_point(lon, lat, i * 360.0 / count, radius_m) for i in range(count)]


# --- Fixtures --------------------------------------------------------
class TrackFiles:
    """Write track files of every supported format below one directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _target(self, name: str) -> Path:
        path = self.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def gpx(self, name: str, track: Sequence[LonLat], **kwargs) -> Path:
        path = self._target(name)
        text = make_gpx(track, **kwargs).encode("utf-8")
        if name.endswith(".gz"):
            path.write_bytes(gzip.compress(text))
        else:
            path.write_bytes(text)
        return path

    def fit(self, name: str, points: Sequence[Optional[LonLat]], corrupt: bool = False, **kwargs) -> Path:
        data = fit_bytes(points, **kwargs)
        if corrupt:
            data = corrupt_fit_header(data)
        path = self._target(name)
        path.write_bytes(gzip.compress(data))
        return path

    def timeline(self, payload: object, name: str = "location-history.json") -> Path:
        path = self._target(name)
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        return path

    def raw(self, name: str, content: bytes) -> Path:
        path = self._target(name)
        path.write_bytes(content)
        return path


@pytest.fixture
def track_files(tmp_path: Path) -> TrackFiles:
    """Factory writing input files into ``tmp_path / 'tracks'``."""
    return TrackFiles(tmp_path / "tracks")


def e7_locations(points: Iterable[LonLat]) -> dict:
    return {
        "locations": [
            {
                "latitudeE7": int(round(lat * 1e7)),
                "longitudeE7": int(round(lon * 1e7)),
                "timestampMs": str(1_600_000_000_000 + i * 1000),
            }
            for i, (lon, lat) in enumerate(points)
        ]
    }
