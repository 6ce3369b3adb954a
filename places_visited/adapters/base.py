"""Common adapter contract shared by every track format."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import gzip
from pathlib import Path
from typing import BinaryIO, Iterator, Tuple, Union

from ..models import GeoPoint

PathLike = Union[str, Path]


@dataclass(frozen=True, slots=True)
class RawTrackSequence:
    """Lazy, restartable sequence of points decoded from one file.

    Every iteration re-opens and re-decodes the file, so nothing is held in
    memory between passes. Decoding errors surface while iterating.
    """

    path: Path
    adapter: "TrackAdapter"

    def __iter__(self) -> Iterator[GeoPoint]:
        return self.adapter.iter_points(self.path)


class TrackAdapter(ABC):
    """Decode one file into geographic points.

    Subclasses declare the (lower-case) file name suffixes they accept and
    implement :meth:`iter_points`. Adapters hold no per-file state, so one
    instance can serve many files concurrently.
    """

    name: str = "track"
    suffixes: Tuple[str, ...] = ()

    def matches(self, path: PathLike) -> bool:
        file_name = Path(path).name.lower()
        return any(file_name.endswith(suffix) for suffix in self.suffixes)

    def parse(self, path: PathLike) -> RawTrackSequence:
        return RawTrackSequence(Path(path), self)

    @abstractmethod
    def iter_points(self, path: Path) -> Iterator[GeoPoint]:
        """Yield the points stored in ``path``.

        Raises:
            ParseError: For malformed text documents.
            FormatError: For malformed binary streams.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def is_gzipped(path: PathLike) -> bool:
    return Path(path).name.lower().endswith(".gz")


def open_binary(path: PathLike) -> BinaryIO:
    """Open ``path`` for reading, decompressing gzip input transparently."""

    if is_gzipped(path):
        return gzip.open(path, "rb")  # type: ignore[return-value]
    return open(path, "rb")


__all__ = ["RawTrackSequence", "TrackAdapter", "is_gzipped", "open_binary"]
