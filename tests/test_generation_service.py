"""End-to-end bulk / daily generation through the service entry points."""

from __future__ import annotations

import random
from typing import List

import pytest

from conftest import DAY_START, make_points, membership, settings
from trackgen.errors import InvalidRangeError, SessionNotFoundError
from trackgen.models import Point, SessionStatus
from trackgen.segmentation import GapRule, iter_runs, split_into_segments

TEN_MIN_300M = settings(minutes=10, meters=300)


def _random_walk(seed: int, count: int = 600) -> List[Point]:
    rng = random.Random(seed)
    points: List[Point] = []
    ts = DAY_START + 120
    lat, lon = 52.0, 13.0
    for idx in range(count):
        ts += rng.choice([10, 30, 60, 240, 599, 600, 601, 900, 3600, 7200])
        step = rng.choice([0.0, 1e-4, 5e-4, 1e-3, 0.004])
        lat += step
        valid = rng.random() > 0.03
        points.append(
            Point(idx + 1, 1, ts, lat if valid else None, lon if valid else None)
        )
    # A few points without a timestamp never take part.
    points.extend(Point(10_000 + n, 1, None, 52.0, 13.0) for n in range(3))
    return points


def _rule() -> GapRule:
    return GapRule.from_settings(TEN_MIN_300M)


@pytest.mark.parametrize("seed", [11, 12])
@pytest.mark.parametrize(
    "chunk_size,margin",
    [(600, 60), (3600, 0), (6 * 3600, 3600), (86400, 300), (30 * 86400, 3600)],
)
def test_chunked_generation_matches_single_pass(make_service, seed, chunk_size, margin):
    points = _random_walk(seed)
    expected = sorted([p.id for p in seg] for seg in split_into_segments(points, _rule()))

    service = make_service(TEN_MIN_300M, chunk_buffer_seconds=margin, max_workers=4)
    service.add_points(points)
    session_id = service.generate(1, chunk_size=chunk_size, wait=True)

    assert membership(service.tracks_for(1), service.points) == expected
    status = service.session_status(1, session_id)
    assert status["status"] == "completed"
    assert status["completed_chunks"] == status["total_chunks"]
    assert status["tracks_created"] == len(expected)


def test_vectorized_strategy_gives_same_tracks(make_service):
    points = _random_walk(5, count=300)
    iterative = make_service(TEN_MIN_300M)
    iterative.add_points(points)
    iterative.generate(1, chunk_size=3600, wait=True)
    vectorized = make_service(TEN_MIN_300M, strategy="vectorized")
    vectorized.add_points(points)
    vectorized.generate(1, chunk_size=3600, wait=True)

    assert membership(vectorized.tracks_for(1), vectorized.points) == membership(
        iterative.tracks_for(1), iterative.points
    )


def test_no_point_left_behind(make_service):
    points = _random_walk(21)
    service = make_service(TEN_MIN_300M)
    service.add_points(points)
    service.generate(1, chunk_size=1800, wait=True)

    isolated = {
        run[0].id for run in iter_runs(points, _rule()) if len(run) == 1
    }
    for point in service.points.all_points(1):
        if point.timestamp is None:
            assert point.track_id is None
        elif point.id in isolated:
            assert point.track_id is None
        else:
            assert point.track_id is not None, point


def test_examples_through_the_service(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60, 120, 600]))
    service.generate(1, DAY_START, DAY_START + 900, chunk_size=300, wait=True)
    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3]]

    other = make_service(settings(minutes=5))
    other.add_points(make_points([0, 100, 350, 400]))
    session_id = other.generate(1, DAY_START, DAY_START + 900, chunk_size=300, wait=True)
    (track,) = other.tracks_for(1)
    assert (track.start_at, track.end_at) == (DAY_START, DAY_START + 400)
    assert other.session_status(1, session_id)["tracks_created"] == 1


def test_regenerating_a_range_is_idempotent(make_service):
    service = make_service(TEN_MIN_300M)
    service.add_points(_random_walk(8, count=200))
    service.generate(1, chunk_size=3600, wait=True)
    first = membership(service.tracks_for(1), service.points)

    service.generate(1, chunk_size=7200, wait=True)

    assert membership(service.tracks_for(1), service.points) == first


def test_partial_range_reconnects_with_tracks_outside(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points(list(range(0, 7201, 60))))
    service.generate(1, chunk_size=3600, wait=True)
    assert service.tracks.count(1) == 1

    session_id = service.generate(
        1, DAY_START + 1800, DAY_START + 3600, chunk_size=600, wait=True
    )

    (track,) = service.tracks_for(1)
    assert track.point_count == 121
    assert (track.start_at, track.end_at) == (DAY_START, DAY_START + 7200)
    status = service.session_status(1, session_id)
    assert status["status"] == "completed"
    assert status["tracks_created"] >= 0


def test_daily_mode_covers_one_utc_day(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([3600, 3660, 3720]))
    service.add_points(make_points([86400 + 60, 86400 + 120], start_id=50))

    session_id = service.generate(1, DAY_START + 4000, mode="daily", wait=True)

    status = service.session_status(1, session_id)
    assert status["total_chunks"] == 1
    assert status["metadata"]["mode"] == "daily"
    assert status["metadata"]["chunk_size"] == "6 hours"
    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3]]
    assert service.points.get(50).track_id is None


def test_open_ended_range_starts_at_first_point(make_service, clock):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([500, 560]))
    clock.now = DAY_START + 10_000

    session_id = service.generate(1, wait=True)

    meta = service.session_status(1, session_id)["metadata"]
    assert meta["start_at"] == DAY_START + 500
    assert meta["end_at"] == DAY_START + 10_001
    assert service.tracks.count(1) == 1


def test_nothing_to_generate_returns_none(make_service, caplog):
    service = make_service()
    assert service.generate(1, wait=True) is None
    assert service.generate(1, DAY_START, DAY_START, wait=True) is None
    assert "No time chunks" in caplog.text


def test_inverted_range_is_rejected(make_service):
    service = make_service()
    with pytest.raises(InvalidRangeError):
        service.generate(1, DAY_START + 100, DAY_START, wait=True)
    with pytest.raises(InvalidRangeError):
        service.generate(1, "not a date", DAY_START, wait=True)


def test_session_status_is_user_scoped(make_service):
    service = make_service()
    service.add_points(make_points([0, 60]))
    session_id = service.generate(1, wait=True)

    assert service.session_status(1, session_id)["status"] == "completed"
    with pytest.raises(SessionNotFoundError):
        service.session_status(2, session_id)
    with pytest.raises(SessionNotFoundError):
        service.session_status(1, "missing")


def test_async_generation_resolves_through_scheduler(make_service, scheduler):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 100, 350, 400]))

    session_id = service.generate(1, DAY_START, DAY_START + 900, chunk_size=300)
    service._executor.shutdown(wait=True)

    assert scheduler.pending() == 1
    scheduler.run_all()
    status = service.session_status(1, session_id)
    assert status["status"] == "completed"
    assert status["tracks_created"] == 1
    assert service.tracks.count(1) == 1


def test_chunk_failure_fails_session(make_service, notifier, monkeypatch):
    service = make_service(settings(minutes=5), max_workers=1)
    service.add_points(make_points([0, 60, 4000, 4060]))

    original = service.builder.build

    def flaky(segment):
        if segment[0].timestamp >= DAY_START + 3600:
            raise ConnectionError("storage unavailable")
        return original(segment)

    monkeypatch.setattr(service.builder, "build", flaky)
    session_id = service.generate(1, DAY_START, DAY_START + 7200, chunk_size=3600, wait=True)

    status = service.session_status(1, session_id)
    assert status["status"] == "failed"
    assert "storage unavailable" in status["error"]
    assert len(notifier.failed) == 1
    # Work committed by the healthy chunk survives.
    assert membership(service.tracks_for(1), service.points) == [[1, 2]]


def test_tracks_for_filters_by_range(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60, 1000, 1060]))
    service.generate(1, wait=True)

    assert len(service.tracks_for(1)) == 2
    assert len(service.tracks_for(1, DAY_START + 500, DAY_START + 2000)) == 1
    assert service.tracks_for(2) == []


def test_reclaim_stale_sessions_via_service(make_service, clock, notifier):
    service = make_service()
    service.add_points(make_points([0, 60]))
    session_id = service.generate(1, DAY_START, DAY_START + 600)
    service._executor.shutdown(wait=True)
    clock.advance(5 * 3600)

    reclaimed = service.reclaim_stale_sessions()

    assert [s.session_id for s in reclaimed] == [session_id]
    assert service.session(1, session_id).status is SessionStatus.FAILED
    assert notifier.stale and notifier.stale[0][1] == session_id


def test_sparse_range_dispatches_only_chunks_with_points(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60]))
    service.add_points(make_points([15 * 86400 + 1800, 15 * 86400 + 1860], start_id=3))

    session_id = service.generate(
        1, DAY_START, DAY_START + 30 * 86400, chunk_size=3600, wait=True
    )

    status = service.session_status(1, session_id)
    assert status["total_chunks"] == 2
    assert status["status"] == "completed"
    assert status["tracks_created"] == 2
    assert membership(service.tracks_for(1), service.points) == [[1, 2], [3, 4]]


def test_track_spanning_skipped_hours_is_rejoined(make_service):
    # One-minute steps with a 100 minute hole, joined by a 2 hour threshold.
    service = make_service(settings(minutes=120))
    service.add_points(make_points([0, 60, 6060, 6120]))

    service.generate(1, DAY_START, DAY_START + 4 * 3600, chunk_size=1200, wait=True)

    assert membership(service.tracks_for(1), service.points) == [[1, 2, 3, 4]]
