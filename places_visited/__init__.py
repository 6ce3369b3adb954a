"""Places visited: point and buffer map layers from personal track history."""

from .errors import FormatError, NoInputError, OutputWriteError, ParseError
from .main import main, run_pipeline
from .models import GeoPoint

__all__ = [
    "main",
    "run_pipeline",
    "GeoPoint",
    "FormatError",
    "NoInputError",
    "OutputWriteError",
    "ParseError",
]
