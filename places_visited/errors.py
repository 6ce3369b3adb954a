"""Central error types used across the application."""

from __future__ import annotations

from pathlib import Path


class TrackFileError(RuntimeError):
    """Base error for a single input file that could not be decoded.

    Raised by format adapters and recovered by the ingestion service, which
    skips the file and keeps going.
    """

    def __init__(self, message: str, path: str | Path | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        message = super().__str__()
        if self.path is None:
            return message
        return f"{self.path.name}: {message}"


class ParseError(TrackFileError):
    """Raised when an XML or JSON document is malformed."""


class FormatError(TrackFileError):
    """Raised when a FIT stream has a bad header, checksum or message layout."""


class NoInputError(RuntimeError):
    """Raised when a run has nothing usable to process."""


class OutputWriteError(RuntimeError):
    """Raised when the output layers cannot be serialized."""


__all__ = [
    "TrackFileError",
    "ParseError",
    "FormatError",
    "NoInputError",
    "OutputWriteError",
]
