"""Incremental track generation for one user and one day.

Each run picks up where the last finalized track of the day ended, folds in
whatever was parked in the day's buffer, and segments the lot. A segment is
only turned into a track once its newest point is older than the grace
period; anything younger goes back into the buffer for the next run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

from .buffer import PointBuffer
from .config import (
    BUFFER_TTL_SECONDS,
    INCREMENTAL_GRACE_PERIOD_SECONDS,
    INCREMENTAL_MAX_BUFFER_AGE_SECONDS,
)
from .geo import DistanceFn, geodesic_distance
from .models import Point
from .segmentation import GapRule, iter_runs
from .storage import PointRepository, TrackRepository
from .store import MemoryKeyValueStore
from .track_builder import TrackBuilder
from .utils import TimeInput, day_bounds, to_day


@dataclass(slots=True)
class IncrementalResult:
    user_id: int
    day: str
    tracks_created: int = 0
    buffered_points: int = 0
    discarded_points: int = 0


class IncrementalGenerator:
    def __init__(
        self,
        store: MemoryKeyValueStore,
        points: PointRepository,
        tracks: TrackRepository,
        builder: TrackBuilder,
        *,
        distance_fn: DistanceFn = geodesic_distance,
        grace_period: int = INCREMENTAL_GRACE_PERIOD_SECONDS,
        max_buffer_age: int = INCREMENTAL_MAX_BUFFER_AGE_SECONDS,
        buffer_ttl: int = BUFFER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._points = points
        self._tracks = tracks
        self._builder = builder
        self._distance_fn = distance_fn
        self.grace_period = grace_period
        self.max_buffer_age = max_buffer_age
        self.buffer_ttl = buffer_ttl
        self._clock = clock
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def buffer_for(self, user_id: int, day: TimeInput) -> PointBuffer:
        return PointBuffer(self._store, user_id, day, ttl=self.buffer_ttl)

    def resume_point(self, user_id: int, day_start: int, day_end: int) -> int:
        """Just after the last finalized track of the day, or the start of the day."""

        last = self._tracks.last_for_day(user_id, day_start, day_end)
        if last is None:
            return day_start
        return max(day_start, last.end_at + 1)

    def run(
        self,
        user_id: int,
        day: TimeInput,
        rule: GapRule,
        now: float | None = None,
    ) -> IncrementalResult:
        day_value = to_day(day)
        day_start, day_end = day_bounds(day_value)
        result = IncrementalResult(user_id=user_id, day=day_value.isoformat())
        buffer = self.buffer_for(user_id, day_value)
        with buffer.locked():
            current = self._clock() if now is None else now
            resume_at = self.resume_point(user_id, day_start, day_end)
            fresh = self._points.points_between(
                user_id, resume_at, day_end, untracked_only=True
            )
            candidates = self._merge_with_buffer(fresh, buffer.retrieve())
            if not candidates:
                buffer.clear()
                self._log.debug("No pending points for user %s on %s", user_id, day_value)
                return result

            keep: List[Point] = []
            for run in iter_runs(candidates, rule, self._distance_fn):
                age = current - int(run[-1].timestamp)  # type: ignore[arg-type]
                if len(run) >= 2:
                    if age >= self.grace_period:
                        self._builder.build(run)
                        result.tracks_created += 1
                    else:
                        keep.extend(run)
                elif age <= self.max_buffer_age:
                    keep.extend(run)
                else:
                    result.discarded_points += len(run)
            result.buffered_points = buffer.store_points(keep)

        self._log.info(
            "Incremental run for user %s on %s: %d tracks created, %d points buffered, %d discarded",
            user_id,
            result.day,
            result.tracks_created,
            result.buffered_points,
            result.discarded_points,
        )
        return result

    def _merge_with_buffer(self, fresh: List[Point], buffered: List[Point]) -> List[Point]:
        """Union by point id, preferring the repository's current copy."""

        merged: Dict[int, Point] = {p.id: p for p in fresh}
        for point in buffered:
            if point.id in merged:
                continue
            current = self._points.get(point.id)
            if current is None:
                merged[point.id] = point
            elif current.track_id is None:
                merged[point.id] = current
        return sorted(
            (p for p in merged.values() if p.timestamp is not None),
            key=lambda p: p.sort_key,
        )


__all__ = ["IncrementalGenerator", "IncrementalResult"]
