"""Format adapters and the suffix registry used to route input files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .base import PathLike, RawTrackSequence, TrackAdapter
from .fit import FitAdapter
from .gpx import GpxAdapter
from .timeline import TimelineAdapter


class AdapterRegistry:
    """Ordered collection of adapters; the first adapter that matches wins."""

    def __init__(self, adapters: Iterable[TrackAdapter]):
        self._adapters: Tuple[TrackAdapter, ...] = tuple(adapters)

    @property
    def adapters(self) -> Tuple[TrackAdapter, ...]:
        return self._adapters

    def resolve(self, path: PathLike) -> Optional[TrackAdapter]:
        for adapter in self._adapters:
            if adapter.matches(path):
                return adapter
        return None

    def route(
        self, paths: Sequence[PathLike]
    ) -> Tuple[List[Tuple[Path, TrackAdapter]], List[Path]]:
        """Split ``paths`` into (path, adapter) pairs and unrecognised paths."""

        routed: List[Tuple[Path, TrackAdapter]] = []
        ignored: List[Path] = []
        for raw in paths:
            path = Path(raw)
            adapter = self.resolve(path)
            if adapter is None:
                ignored.append(path)
            else:
                routed.append((path, adapter))
        return routed, ignored


def default_registry() -> AdapterRegistry:
    return AdapterRegistry([FitAdapter(), GpxAdapter(), TimelineAdapter()])


__all__ = [
    "AdapterRegistry",
    "FitAdapter",
    "GpxAdapter",
    "RawTrackSequence",
    "TimelineAdapter",
    "TrackAdapter",
    "default_registry",
]
