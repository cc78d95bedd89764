"""Incremental per-day generation with grace-period buffering."""

from __future__ import annotations

from conftest import DAY_START, make_points, membership, settings
from trackgen.buffer import PointBuffer
from trackgen.models import Point


def _buffer(service, day=DAY_START):
    return PointBuffer(service.store, 1, day)


def test_recent_segment_stays_buffered_until_grace_period_passes(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60, 120]))
    clock.now = DAY_START + 120 + 120  # last point is 2 minutes old

    first = service.generate_incremental(1, DAY_START)

    assert first.tracks_created == 0
    assert first.buffered_points == 3
    assert service.tracks.count(1) == 0
    assert [p.id for p in _buffer(service).retrieve()] == [1, 2, 3]

    clock.now = DAY_START + 120 + 300  # now 5 minutes old
    second = service.generate_incremental(1, DAY_START)

    assert second.tracks_created == 1
    assert second.buffered_points == 0
    assert not _buffer(service).exists()
    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3]]


def test_finished_segments_finalize_while_tail_is_buffered(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60, 120, 3000, 3060]))
    clock.now = DAY_START + 3100

    result = service.generate_incremental(1, DAY_START)

    assert result.tracks_created == 1
    assert result.buffered_points == 2
    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3]]
    assert [p.id for p in _buffer(service).retrieve()] == [4, 5]


def test_run_resumes_after_last_finalized_track(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60]))
    clock.now = DAY_START + 1000
    service.generate_incremental(1, DAY_START)

    service.add_points(make_points([2000, 2060, 2120], start_id=10))
    clock.now = DAY_START + 3000
    result = service.generate_incremental(1, DAY_START)

    assert result.tracks_created == 1
    assert membership(service.tracks_for(1), service.points) == [[1, 2], [10, 11, 12]]


def test_lone_points_are_kept_then_discarded_when_stale(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0]))
    clock.now = DAY_START + 600

    kept = service.generate_incremental(1, DAY_START)
    assert kept.buffered_points == 1
    assert kept.discarded_points == 0

    clock.now = DAY_START + 3601
    dropped = service.generate_incremental(1, DAY_START)
    assert dropped.buffered_points == 0
    assert dropped.discarded_points == 1
    assert not _buffer(service).exists()


def test_buffered_points_merge_with_new_arrivals(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60]))
    clock.now = DAY_START + 100
    service.generate_incremental(1, DAY_START)

    service.add_points(make_points([120, 180], start_id=3))
    clock.now = DAY_START + 1000
    result = service.generate_incremental(1, DAY_START)

    assert result.tracks_created == 1
    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3, 4]]


def test_buffered_points_tracked_elsewhere_are_ignored(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60]))
    clock.now = DAY_START + 100
    service.generate_incremental(1, DAY_START)
    # A bulk run claims the points before the next incremental pass.
    service.generate(1, DAY_START, DAY_START + 600, wait=True)

    clock.now = DAY_START + 1000
    result = service.generate_incremental(1, DAY_START)

    assert result.tracks_created == 0
    assert service.tracks.count(1) == 1


def test_buffer_round_trips_points_and_expires(store, clock):
    buffer = PointBuffer(store, 1, "2024-01-15", ttl=60)
    points = [
        Point(1, 1, DAY_START, 52.0, 13.0, altitude=35.5),
        Point(2, 1, DAY_START + 10, None, None),
    ]

    assert buffer.store_points(points) == 2
    assert buffer.key == "track_buffer:1:2024-01-15"
    assert buffer.retrieve() == points
    assert len(buffer) == 2

    clock.advance(61)
    assert buffer.retrieve() == []


def test_days_have_separate_buffers(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60]))
    service.add_points(make_points([86400, 86460], start_id=10))
    clock.now = DAY_START + 86500

    service.generate_incremental(1, DAY_START + 86400)

    assert service.tracks.count(1) == 0
    assert _buffer(service, DAY_START + 86400).exists()
    assert not _buffer(service, DAY_START).exists()
