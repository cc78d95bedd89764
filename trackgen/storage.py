"""In-memory point and track repositories.

The engine only needs a handful of queries from its persistence layer; these
repositories implement them with thread-safe dictionaries so the whole engine
can run (and be tested) in a single process.
"""

from __future__ import annotations

import bisect
import dataclasses
import itertools
import logging
import math
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .models import Point, Track
from .store import KeyedLocks

__all__ = ["PointRepository", "TrackRepository"]

_SortKey = Tuple[int, int]
_LOWEST_ID = float("-inf")


class PointRepository:
    """Points per user, kept in ``(timestamp, id)`` order."""

    def __init__(self, points: Iterable[Point] | None = None) -> None:
        self._lock = threading.RLock()
        self._points: Dict[int, Point] = {}
        self._order: Dict[int, List[_SortKey]] = {}
        self._members: Dict[int, Set[int]] = {}
        self._log = logging.getLogger(self.__class__.__name__)
        if points:
            self.add_many(points)

    def add(self, point: Point) -> None:
        self.add_many([point])

    def add_many(self, points: Iterable[Point]) -> int:
        added = 0
        with self._lock:
            for point in points:
                if point.id in self._points:
                    self._log.debug("Ignoring duplicate point id=%s", point.id)
                    continue
                self._points[point.id] = point
                if point.timestamp is not None:
                    bisect.insort(self._order.setdefault(point.user_id, []), point.sort_key)
                if point.track_id is not None:
                    self._members.setdefault(point.track_id, set()).add(point.id)
                added += 1
        return added

    def get(self, point_id: int) -> Point | None:
        with self._lock:
            return self._points.get(point_id)

    def get_many(self, point_ids: Iterable[int]) -> List[Point]:
        with self._lock:
            found = [self._points[pid] for pid in point_ids if pid in self._points]
        return sorted(found, key=lambda p: p.sort_key)

    def points_between(
        self,
        user_id: int,
        start_at: int,
        end_at: int,
        *,
        untracked_only: bool = False,
    ) -> List[Point]:
        """Points with ``start_at <= timestamp < end_at``; timestamp-less points never match."""

        with self._lock:
            order = self._order.get(user_id, [])
            lo = bisect.bisect_left(order, (start_at, _LOWEST_ID))
            hi = bisect.bisect_left(order, (end_at, _LOWEST_ID))
            points = [self._points[pid] for _, pid in order[lo:hi]]
        if untracked_only:
            points = [p for p in points if p.track_id is None]
        return points

    def has_points(self, user_id: int, start_at: int, end_at: int) -> bool:
        with self._lock:
            order = self._order.get(user_id, [])
            idx = bisect.bisect_left(order, (start_at, _LOWEST_ID))
            return idx < len(order) and order[idx][0] < end_at

    def adjacent_points(
        self, user_id: int, boundary: int
    ) -> Tuple[Optional[Point], Optional[Point]]:
        """Return the last point before ``boundary`` and the first at or after it."""

        with self._lock:
            order = self._order.get(user_id, [])
            idx = bisect.bisect_left(order, (boundary, _LOWEST_ID))
            before = self._points[order[idx - 1][1]] if idx > 0 else None
            after = self._points[order[idx][1]] if idx < len(order) else None
        return before, after

    def time_span(self, user_id: int) -> Tuple[int, int] | None:
        with self._lock:
            order = self._order.get(user_id)
            if not order:
                return None
            return order[0][0], order[-1][0]

    def points_for_track(self, track_id: int) -> List[Point]:
        with self._lock:
            members = self._members.get(track_id, set())
            points = [self._points[pid] for pid in members]
        return sorted(points, key=lambda p: p.sort_key)

    def assign_track(self, point_ids: Iterable[int], track_id: int) -> int:
        return self._set_track(point_ids, track_id)

    def detach(self, point_ids: Iterable[int]) -> int:
        return self._set_track(point_ids, None)

    def detach_track(self, track_id: int) -> int:
        with self._lock:
            members = list(self._members.get(track_id, set()))
            return self._set_track(members, None)

    def _set_track(self, point_ids: Iterable[int], track_id: int | None) -> int:
        changed = 0
        with self._lock:
            for pid in point_ids:
                point = self._points.get(pid)
                if point is None or point.track_id == track_id:
                    continue
                if point.track_id is not None:
                    previous = self._members.get(point.track_id)
                    if previous is not None:
                        previous.discard(pid)
                        if not previous:
                            del self._members[point.track_id]
                if track_id is not None:
                    self._members.setdefault(track_id, set()).add(pid)
                self._points[pid] = dataclasses.replace(point, track_id=track_id)
                changed += 1
        return changed

    def all_points(self, user_id: int) -> List[Point]:
        with self._lock:
            points = [p for p in self._points.values() if p.user_id == user_id]
        return sorted(points, key=lambda p: p.sort_key)


def _copy_track(track: Track) -> Track:
    return dataclasses.replace(track, segments=list(track.segments))


class TrackRepository:
    """Tracks keyed by id, with locks scoped to the tracks a change touches."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tracks: Dict[int, Track] = {}
        self._ids = itertools.count(1)
        self._track_locks = KeyedLocks()

    def next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def save(self, track: Track) -> Track:
        with self._lock:
            self._tracks[track.id] = _copy_track(track)
        return track

    def get(self, track_id: int) -> Track | None:
        with self._lock:
            track = self._tracks.get(track_id)
            return _copy_track(track) if track is not None else None

    def delete(self, track_id: int) -> bool:
        with self._lock:
            return self._tracks.pop(track_id, None) is not None

    def for_user(
        self,
        user_id: int,
        start_at: int | None = None,
        end_at: int | None = None,
    ) -> List[Track]:
        """Tracks of a user overlapping ``[start_at, end_at)``, ordered by start."""

        lo = start_at if start_at is not None else -math.inf
        hi = end_at if end_at is not None else math.inf
        with self._lock:
            tracks = [
                _copy_track(t)
                for t in self._tracks.values()
                if t.user_id == user_id and t.overlaps(lo, hi)
            ]
        tracks.sort(key=lambda t: (t.start_at, t.id))
        return tracks

    def last_for_day(self, user_id: int, day_start: int, day_end: int) -> Track | None:
        candidates = [
            t for t in self.for_user(user_id, day_start, day_end) if t.end_at < day_end
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda t: (t.end_at, t.id))

    def count(self, user_id: int | None = None) -> int:
        with self._lock:
            if user_id is None:
                return len(self._tracks)
            return sum(1 for t in self._tracks.values() if t.user_id == user_id)

    @contextmanager
    def transaction(self, *track_ids: int) -> Iterator[None]:
        """Serialise changes to the given tracks; locks are taken in id order."""

        with self._track_locks.hold(*track_ids):
            yield

    @property
    def held_locks(self) -> int:
        return len(self._track_locks)
