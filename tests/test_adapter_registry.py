from __future__ import annotations

from pathlib import Path

from places_visited.adapters import (
    AdapterRegistry,
    FitAdapter,
    GpxAdapter,
    TimelineAdapter,
    default_registry,
)


def test_default_registry_routes_by_suffix():
    registry = default_registry()
    assert isinstance(registry.resolve("a/ride.fit.gz"), FitAdapter)
    assert isinstance(registry.resolve("a/run.gpx"), GpxAdapter)
    assert isinstance(registry.resolve("a/run.gpx.gz"), GpxAdapter)
    assert isinstance(registry.resolve("a/location-history.json"), TimelineAdapter)


def test_unrecognised_files_are_ignored():
    registry = default_registry()
    for name in ("notes.txt", "ride.fit", "photo.jpg", "records.json", "run.gpx.zip"):
        assert registry.resolve(name) is None


def test_route_splits_routed_and_ignored():
    paths = ["x/run.gpx", "x/readme.md", Path("x/ride.FIT.GZ"), "x/location-history.json"]
    routed, ignored = default_registry().route(paths)
    assert [(path.name, adapter.name) for path, adapter in routed] == [
        ("run.gpx", "gpx"),
        ("ride.FIT.GZ", "fit"),
        ("location-history.json", "timeline"),
    ]
    assert ignored == [Path("x/readme.md")]


def test_first_matching_adapter_wins():
    class LooseGpx(GpxAdapter):
        name = "loose"
        suffixes = (".gz",)

    registry = AdapterRegistry([LooseGpx(), FitAdapter()])
    assert registry.resolve("ride.fit.gz").name == "loose"
    assert len(registry.adapters) == 2
