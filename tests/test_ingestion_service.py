"""Ingestion service tests: routing, skip-and-continue and the parallel reduce."""

from __future__ import annotations

import gzip
import logging

import pytest

from conftest import corrupt_fit_header, e7_locations, fit_bytes, line_of_points
from places_visited.errors import NoInputError
from places_visited.services import (
    IngestionService,
    IngestionServiceConfig,
    discover_input_files,
)

SPOT = (-3.1791, 51.4816)


def _service(**kwargs) -> IngestionService:
    return IngestionService(IngestionServiceConfig(**kwargs))


def test_identical_points_across_files_collapse(track_files):
    gpx = track_files.gpx("a/run.gpx", [SPOT] * 3)
    fit = track_files.fit("b/ride.fit.gz", [SPOT] * 2)
    result = _service().process([gpx, fit])
    assert result.unique_points == 1
    assert result.raw_points == 5
    assert result.removed_points == 4
    assert result.files_parsed == 2
    assert result.files_skipped == 0


def test_corrupted_file_is_skipped_and_others_processed(track_files, caplog):
    good = track_files.gpx("run.gpx", line_of_points(*SPOT, count=10, spacing_m=50.0))
    also_good = track_files.timeline(e7_locations([(2.3522, 48.8566)]))
    bad = track_files.fit("broken.fit.gz", [SPOT], corrupt=True)

    with caplog.at_level(logging.WARNING, logger="IngestionService"):
        result = _service().process([good, bad, also_good])

    assert result.files_parsed == 2
    assert result.files_skipped == 1
    assert result.skipped_files == [bad]
    assert result.unique_points == 11
    assert any(
        "Skipping" in rec.message and "broken.fit.gz" in rec.message
        for rec in caplog.records
    )


def test_partially_decoded_file_contributes_nothing(track_files):
    good = track_files.gpx("run.gpx", [SPOT])
    # First chained file decodes, the second has a broken header.
    chained = fit_bytes(line_of_points(10.0, 50.0, count=5, spacing_m=100.0))
    chained += corrupt_fit_header(fit_bytes([(11.0, 50.0)]))
    bad = track_files.raw("chained.fit.gz", gzip.compress(chained))
    result = _service().process([good, bad])
    assert result.unique_points == 1
    assert result.raw_points == 1
    assert result.skipped_files == [bad]


def test_unrecognised_files_are_counted_as_ignored(track_files):
    good = track_files.gpx("run.gpx", [SPOT])
    note = track_files.raw("notes.txt", b"hello")
    plain_fit = track_files.raw("ride.fit", b"\x0e")
    result = _service().process([good, note, plain_fit])
    assert result.files_ignored == 2
    assert result.files_seen == 3


def test_no_recognised_files_raises(track_files):
    note = track_files.raw("notes.txt", b"hello")
    with pytest.raises(NoInputError):
        _service().process([note])


def test_all_files_failing_raises(track_files):
    bad = track_files.fit("broken.fit.gz", [SPOT], corrupt=True)
    worse = track_files.raw("broken.gpx", b"<gpx")
    with pytest.raises(NoInputError, match="failed to parse"):
        _service().process([bad, worse])


def test_files_without_positions_raise(track_files):
    empty = track_files.fit("indoor.fit.gz", [None, None])
    with pytest.raises(NoInputError, match="no valid positions"):
        _service().process([empty])


def test_result_is_identical_for_any_worker_count(track_files):
    paths = [
        track_files.gpx(
            f"run_{i}.gpx", line_of_points(-3.18 + i * 0.001, 51.48, count=50, spacing_m=7.0)
        )
        for i in range(6)
    ]
    serial = _service(max_workers=1).process(paths)
    parallel = _service(max_workers=6).process(list(reversed(paths)))
    assert serial.points == parallel.points
    assert serial.raw_points == parallel.raw_points == 300


def test_progress_callback_sees_every_file(track_files):
    paths = [track_files.gpx(f"r{i}.gpx", [(i * 0.01, 0.0)]) for i in range(3)]
    calls = []
    _service(max_workers=2).process(paths, progress=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 3), (2, 3), (3, 3)]


def test_progress_callback_errors_do_not_abort(track_files):
    path = track_files.gpx("r.gpx", [SPOT])

    def explode(done, total):
        raise RuntimeError("boom")

    result = _service().process([path], progress=explode)
    assert result.unique_points == 1


def test_discover_input_files_recurses_and_sorts(track_files):
    track_files.gpx("b/deep/run.gpx", [SPOT])
    track_files.raw("a.txt", b"")
    found = discover_input_files(track_files.root)
    assert [p.relative_to(track_files.root).as_posix() for p in found] == [
        "a.txt",
        "b/deep/run.gpx",
    ]


def test_discover_missing_directory_raises(tmp_path):
    with pytest.raises(NoInputError, match="not found"):
        discover_input_files(tmp_path / "missing")


def test_zero_workers_rejected():
    with pytest.raises(ValueError):
        _service(max_workers=0)
