"""Global pytest fixtures & helpers.

Adds project root to path and provides an in-memory engine (store driven by a
fake clock, repositories, a recording scheduler and notifier) plus point
factories shared across the test modules.
"""
from __future__ import annotations

import os
import sys
from typing import Any, Callable, Iterable, List, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from trackgen.models import Point, TrackingSettings
from trackgen.notifications import LoggingNotifier
from trackgen.services import TrackGenerationConfig, TrackGenerationService
from trackgen.storage import PointRepository, TrackRepository
from trackgen.store import MemoryKeyValueStore
from trackgen.track_builder import TrackBuilder

# 2024-01-15T00:00:00Z
DAY_START = 1_705_276_800
BASE_LAT = 52.0
BASE_LON = 13.0
STEP_DEG = 1e-4  # ~11 m per step in latitude


# --- Test doubles ----------------------------------------------------
class FakeClock:
    def __init__(self, now: float = DAY_START) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingScheduler:
    """Collects scheduled calls; tests decide when they run."""

    def __init__(self) -> None:
        self.calls: List[tuple[float, Callable[..., Any], tuple[Any, ...]]] = []

    def schedule(self, delay: float, func: Callable[..., Any], *args: Any) -> None:
        self.calls.append((delay, func, args))

    def pending(self) -> int:
        return len(self.calls)

    def run_next(self) -> Any:
        _, func, args = self.calls.pop(0)
        return func(*args)

    def run_all(self, limit: int = 100) -> int:
        ran = 0
        while self.calls and ran < limit:
            self.run_next()
            ran += 1
        return ran

    def shutdown(self) -> None:
        self.calls.clear()


class RecordingNotifier(LoggingNotifier):
    def __init__(self) -> None:
        super().__init__()
        self.failed: List[tuple[int, str, str]] = []
        self.stale: List[tuple[int, str, str]] = []

    def session_failed(self, user_id: int, session_id: str, reason: str) -> None:
        super().session_failed(user_id, session_id, reason)
        self.failed.append((user_id, session_id, reason))

    def session_stale(self, user_id: int, session_id: str, reason: str) -> None:
        super().session_stale(user_id, session_id, reason)
        self.stale.append((user_id, session_id, reason))


# --- Factory helpers -------------------------------------------------
def make_points(
    offsets: Sequence[int],
    *,
    user_id: int = 1,
    start_id: int = 1,
    base: int = DAY_START,
    lat_step: float = STEP_DEG,
) -> List[Point]:
    """Points at ``base + offset`` seconds, each a small step north of the last."""

    return [
        Point(
            id=start_id + i,
            user_id=user_id,
            timestamp=base + offset,
            latitude=BASE_LAT + i * lat_step,
            longitude=BASE_LON,
        )
        for i, offset in enumerate(offsets)
    ]


def membership(tracks: Iterable[Any], points: PointRepository) -> List[List[int]]:
    """Point ids per track, ordered by track start; comparable across runs."""

    return sorted(
        [p.id for p in points.points_for_track(t.id)] for t in tracks
    )


def settings(minutes: float = 5, meters: float = float("inf")) -> TrackingSettings:
    return TrackingSettings(time_threshold_minutes=minutes, distance_threshold_meters=meters)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(timer=clock)


@pytest.fixture
def point_repo() -> PointRepository:
    return PointRepository()


@pytest.fixture
def track_repo() -> TrackRepository:
    return TrackRepository()


@pytest.fixture
def builder(point_repo: PointRepository, track_repo: TrackRepository) -> TrackBuilder:
    return TrackBuilder(point_repo, track_repo)


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_service(
    clock: FakeClock,
    store: MemoryKeyValueStore,
    scheduler: RecordingScheduler,
    notifier: RecordingNotifier,
):
    """Build a service wired to the shared fake clock / scheduler / notifier."""

    created: List[TrackGenerationService] = []

    def _make(
        tracking: TrackingSettings | None = None, **overrides: Any
    ) -> TrackGenerationService:
        tracking = tracking or settings()
        overrides.setdefault("chunk_buffer_seconds", 60)
        config = TrackGenerationConfig(
            settings_provider=lambda _user_id: tracking,
            scheduler=scheduler,
            notifier=notifier,
            clock=clock,
            **overrides,
        )
        service = TrackGenerationService(store=store, config=config)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()
