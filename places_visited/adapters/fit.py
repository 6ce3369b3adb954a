"""FIT activity adapter for gzip-compressed ``.fit.gz`` exports.

The decoder understands just enough of the FIT protocol to walk every record
of a file: the file header, definition messages (including developer field
definitions), normal data messages and compressed-timestamp data messages.
Only position-bearing messages are turned into points; every other message is
skipped using the field sizes from its definition.

Positions are stored as semicircles, a signed 32 bit fraction of a half turn:
``degrees = semicircles * (180 / 2**31)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import gzip
import logging
import math
from pathlib import Path
import struct
from typing import Dict, Iterator, List, Optional, Tuple
import zlib

from ..config import FIT_VERIFY_FILE_CRC
from ..errors import FormatError
from ..models import GeoPoint
from .base import TrackAdapter

_log = logging.getLogger(__name__)

SEMICIRCLE_TO_DEGREES = 180.0 / 2**31
FIT_EPOCH = datetime(1989, 12, 31, tzinfo=timezone.utc)

_SIGNATURE = b".FIT"
_INVALID_SINT32 = 0x7FFFFFFF
_INVALID_UINT32 = 0xFFFFFFFF
_TIMESTAMP_FIELD = 253

# Global message number -> (latitude field, longitude field).
POSITION_FIELDS: Dict[int, Tuple[int, int]] = {
    20: (0, 1),  # record
    160: (1, 2),  # gps_metadata
}

_CRC_TABLE = (
    0x0000, 0xCC01, 0xD801, 0x1400, 0xF001, 0x3C00, 0x2800, 0xE401,
    0xA001, 0x6C00, 0x7800, 0xB401, 0x5000, 0x9C01, 0x8801, 0x4400,
)


def fit_crc(data: bytes, crc: int = 0) -> int:
    """Return the FIT CRC-16 of ``data`` continuing from ``crc``."""

    for byte in data:
        tmp = _CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ _CRC_TABLE[byte & 0xF]
        tmp = _CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ _CRC_TABLE[(byte >> 4) & 0xF]
    return crc


@dataclass(frozen=True, slots=True)
class FitHeader:
    header_size: int
    protocol_version: int
    profile_version: int
    data_size: int
    crc: Optional[int]


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    number: int
    size: int
    base_type: int


@dataclass(frozen=True, slots=True)
class MessageDefinition:
    global_number: int
    little_endian: bool
    fields: Tuple[FieldDefinition, ...]
    developer_size: int

    @property
    def data_size(self) -> int:
        return sum(f.size for f in self.fields) + self.developer_size


def read_header(data: bytes, offset: int = 0, path: Path | None = None) -> FitHeader:
    """Decode and validate the file header starting at ``offset``."""

    if len(data) - offset < 12:
        raise FormatError("file too short for a FIT header", path)
    header_size = data[offset]
    if header_size not in (12, 14):
        raise FormatError(f"unsupported header size {header_size}", path)
    if len(data) - offset < header_size:
        raise FormatError("truncated FIT header", path)
    protocol_version, profile_version, data_size, signature = struct.unpack_from(
        "<BHI4s", data, offset + 1
    )
    if signature != _SIGNATURE:
        raise FormatError("missing .FIT signature", path)
    crc: Optional[int] = None
    if header_size == 14:
        (crc,) = struct.unpack_from("<H", data, offset + 12)
        # A zero header CRC means the writer did not compute one.
        if crc and fit_crc(data[offset : offset + 12]) != crc:
            raise FormatError("header checksum mismatch", path)
    return FitHeader(header_size, protocol_version, profile_version, data_size, crc)


class FitDecoder:
    """Walk the records of an in-memory FIT stream and yield positions."""

    def __init__(self, data: bytes, path: Path | None = None, verify_crc: bool = True):
        self._data = data
        self._path = path
        self._verify_crc = verify_crc

    def positions(self) -> Iterator[GeoPoint]:
        offset = 0
        total = len(self._data)
        if total == 0:
            raise FormatError("empty FIT stream", self._path)
        # Chained FIT files are concatenated header+records+crc blocks.
        while offset < total:
            header = read_header(self._data, offset, self._path)
            records_start = offset + header.header_size
            records_end = records_start + header.data_size
            if records_end + 2 > total:
                raise FormatError("data size exceeds the stream length", self._path)
            if self._verify_crc:
                (expected,) = struct.unpack_from("<H", self._data, records_end)
                if fit_crc(self._data[offset:records_end]) != expected:
                    raise FormatError("file checksum mismatch", self._path)
            yield from self._decode_records(records_start, records_end)
            offset = records_end + 2

    def _decode_records(self, start: int, end: int) -> Iterator[GeoPoint]:
        data = self._data
        definitions: Dict[int, MessageDefinition] = {}
        last_timestamp: Optional[int] = None
        offset = start
        while offset < end:
            record_header = data[offset]
            offset += 1
            if record_header & 0x80:
                # Compressed timestamp header: data message with a 5 bit offset.
                local_type = (record_header >> 5) & 0x03
                time_offset = record_header & 0x1F
                definition = self._definition(definitions, local_type)
                fields, offset = self._read_fields(definition, offset, end)
                if last_timestamp is not None:
                    last_timestamp = _expand_timestamp(last_timestamp, time_offset)
                point = _position(definition, fields, last_timestamp)
                if point is not None:
                    yield point
                continue
            local_type = record_header & 0x0F
            if record_header & 0x40:
                has_developer = bool(record_header & 0x20)
                definitions[local_type], offset = self._read_definition(
                    offset, end, has_developer
                )
                continue
            definition = self._definition(definitions, local_type)
            fields, offset = self._read_fields(definition, offset, end)
            timestamp = fields.get(_TIMESTAMP_FIELD)
            if timestamp is not None and timestamp != _INVALID_UINT32:
                last_timestamp = timestamp
            point = _position(definition, fields, last_timestamp)
            if point is not None:
                yield point

    def _definition(
        self, definitions: Dict[int, MessageDefinition], local_type: int
    ) -> MessageDefinition:
        try:
            return definitions[local_type]
        except KeyError:
            raise FormatError(
                f"data message for undefined local type {local_type}", self._path
            ) from None

    def _read_definition(
        self, offset: int, end: int, has_developer: bool
    ) -> Tuple[MessageDefinition, int]:
        data = self._data
        self._require(offset, 5, end)
        architecture = data[offset + 1]
        little_endian = architecture == 0
        (global_number,) = struct.unpack_from(
            "<H" if little_endian else ">H", data, offset + 2
        )
        field_count = data[offset + 4]
        offset += 5
        self._require(offset, field_count * 3, end)
        fields: List[FieldDefinition] = []
        for _ in range(field_count):
            number, size, base_type = data[offset], data[offset + 1], data[offset + 2]
            fields.append(FieldDefinition(number, size, base_type))
            offset += 3
        developer_size = 0
        if has_developer:
            self._require(offset, 1, end)
            developer_count = data[offset]
            offset += 1
            self._require(offset, developer_count * 3, end)
            for _ in range(developer_count):
                developer_size += data[offset + 1]
                offset += 3
        definition = MessageDefinition(
            global_number, little_endian, tuple(fields), developer_size
        )
        return definition, offset

    def _read_fields(
        self, definition: MessageDefinition, offset: int, end: int
    ) -> Tuple[Dict[int, int], int]:
        self._require(offset, definition.data_size, end)
        wanted = POSITION_FIELDS.get(definition.global_number, ())
        prefix = "<" if definition.little_endian else ">"
        values: Dict[int, int] = {}
        for field in definition.fields:
            if field.size == 4 and (
                field.number in wanted or field.number == _TIMESTAMP_FIELD
            ):
                code = "I" if field.number == _TIMESTAMP_FIELD else "i"
                (values[field.number],) = struct.unpack_from(
                    prefix + code, self._data, offset
                )
            offset += field.size
        return values, offset + definition.developer_size

    def _require(self, offset: int, size: int, end: int) -> None:
        if offset + size > end:
            raise FormatError("truncated message stream", self._path)


def _expand_timestamp(last_timestamp: int, time_offset: int) -> int:
    base = last_timestamp & ~0x1F
    if time_offset >= (last_timestamp & 0x1F):
        return base + time_offset
    return base + time_offset + 0x20


def _position(
    definition: MessageDefinition, fields: Dict[int, int], timestamp: Optional[int]
) -> Optional[GeoPoint]:
    layout = POSITION_FIELDS.get(definition.global_number)
    if layout is None:
        return None
    when = FIT_EPOCH + timedelta(seconds=timestamp) if timestamp is not None else None
    lat_raw = fields.get(layout[0])
    lon_raw = fields.get(layout[1])
    if (
        lat_raw is None
        or lon_raw is None
        or lat_raw == _INVALID_SINT32
        or lon_raw == _INVALID_SINT32
    ):
        # Unset position: the dedup grid drops and counts NaN points.
        return GeoPoint(lon=math.nan, lat=math.nan, timestamp=when)
    return GeoPoint(
        lon=lon_raw * SEMICIRCLE_TO_DEGREES,
        lat=lat_raw * SEMICIRCLE_TO_DEGREES,
        timestamp=when,
    )


class FitAdapter(TrackAdapter):
    """Decode gzip-compressed FIT files into points."""

    name = "fit"
    suffixes = (".fit.gz",)

    def __init__(self, verify_file_crc: bool = FIT_VERIFY_FILE_CRC):
        self.verify_file_crc = verify_file_crc

    def iter_points(self, path: Path) -> Iterator[GeoPoint]:
        try:
            with gzip.open(path, "rb") as handle:
                data = handle.read()
        except (EOFError, zlib.error, gzip.BadGzipFile) as exc:
            raise FormatError(f"unreadable gzip stream ({exc})", path) from exc
        count = 0
        for point in FitDecoder(data, path, self.verify_file_crc).positions():
            count += 1
            yield point
        _log.debug("Decoded %d positions from %s", count, path.name)


__all__ = [
    "FIT_EPOCH",
    "FitAdapter",
    "FitDecoder",
    "FitHeader",
    "POSITION_FIELDS",
    "SEMICIRCLE_TO_DEGREES",
    "fit_crc",
    "read_header",
]
