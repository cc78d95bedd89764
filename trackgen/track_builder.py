"""Turn segments into persisted tracks and keep their statistics current.

``build`` creates a track from a finished segment and assigns its points;
``recalculate`` re-derives everything from the points a track currently owns
(used after boundary merges and range cleaning); ``update_dominant_mode``
picks the transportation mode that accounts for most of the track's time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from shapely.geometry import LineString

from .config import TRACK_MAX_STORED_DISTANCE_M, TRACK_MAX_STORED_SPEED
from .errors import InvalidSegmentError
from .geo import DistanceFn, geodesic_distance
from .models import UNKNOWN_MODE, Point, Track, TrackSegment
from .storage import PointRepository, TrackRepository

ModeSpan = Tuple[str, int, int]
ModeClassifier = Callable[[Sequence[Point]], List[ModeSpan]]

_LOG = logging.getLogger(__name__)


def single_mode_classifier(points: Sequence[Point]) -> List[ModeSpan]:
    """Default classifier: one span of unknown mode covering the whole track."""

    if not points:
        return []
    return [(UNKNOWN_MODE, 0, len(points) - 1)]


@dataclass(slots=True)
class TrackStats:
    start_at: int
    end_at: int
    distance: float
    duration: int
    avg_speed: float
    max_speed: float
    path: LineString | None
    point_count: int
    elevation_gain: float
    elevation_loss: float
    elevation_max: float
    elevation_min: float


def sum_distance(points: Sequence[Point], distance_fn: DistanceFn = geodesic_distance) -> float:
    total = 0.0
    for previous, current in zip(points, points[1:]):
        total += distance_fn(previous, current)
    return total


def _build_path(points: Sequence[Point]) -> LineString | None:
    coords = [
        (float(p.longitude), float(p.latitude))  # type: ignore[arg-type]
        for p in points
        if p.has_coordinates
    ]
    if len(coords) < 2:
        return None
    return LineString(coords)


def _elevation_stats(points: Sequence[Point]) -> Tuple[float, float, float, float]:
    altitudes = [float(p.altitude) for p in points if p.altitude is not None]
    if not altitudes:
        return 0.0, 0.0, 0.0, 0.0
    gain = loss = 0.0
    for previous, current in zip(altitudes, altitudes[1:]):
        diff = current - previous
        if diff > 0:
            gain += diff
        else:
            loss += -diff
    return round(gain), round(loss), max(altitudes), min(altitudes)


def compute_track_stats(
    points: Sequence[Point], distance_fn: DistanceFn = geodesic_distance
) -> TrackStats:
    """Derive all track statistics from an ordered point list (at least two points)."""

    if len(points) < 2:
        raise InvalidSegmentError(f"A track needs at least 2 points, got {len(points)}")
    first, last = points[0], points[-1]
    duration = int(last.timestamp) - int(first.timestamp)  # type: ignore[arg-type]
    distance = 0.0
    max_speed = 0.0
    for previous, current in zip(points, points[1:]):
        step = distance_fn(previous, current)
        distance += step
        elapsed = int(current.timestamp) - int(previous.timestamp)  # type: ignore[arg-type]
        if elapsed > 0:
            max_speed = max(max_speed, step / elapsed)
    distance = min(max(distance, 0.0), TRACK_MAX_STORED_DISTANCE_M)
    avg_speed = distance / duration if duration > 0 else 0.0
    gain, loss, elev_max, elev_min = _elevation_stats(points)
    return TrackStats(
        start_at=int(first.timestamp),  # type: ignore[arg-type]
        end_at=int(last.timestamp),  # type: ignore[arg-type]
        distance=round(distance, 2),
        duration=duration,
        avg_speed=round(min(avg_speed, TRACK_MAX_STORED_SPEED), 2),
        max_speed=round(min(max_speed, TRACK_MAX_STORED_SPEED), 2),
        path=_build_path(points),
        point_count=len(points),
        elevation_gain=gain,
        elevation_loss=loss,
        elevation_max=elev_max,
        elevation_min=elev_min,
    )


class TrackBuilder:
    def __init__(
        self,
        points: PointRepository,
        tracks: TrackRepository,
        *,
        distance_fn: DistanceFn = geodesic_distance,
        mode_classifier: ModeClassifier | None = None,
    ) -> None:
        self._points = points
        self._tracks = tracks
        self._distance_fn = distance_fn
        self._mode_classifier = mode_classifier or single_mode_classifier
        self._log = logging.getLogger(self.__class__.__name__)

    def build(self, segment: Sequence[Point]) -> Track:
        """Persist a track for ``segment`` and assign its points to it."""

        if len(segment) < 2:
            raise InvalidSegmentError(
                f"A track needs at least 2 points, got {len(segment)}"
            )
        ordered = sorted(segment, key=lambda p: p.sort_key)
        track_id = self._tracks.next_id()
        track = Track(
            id=track_id,
            user_id=ordered[0].user_id,
            start_at=int(ordered[0].timestamp),  # type: ignore[arg-type]
            end_at=int(ordered[-1].timestamp),  # type: ignore[arg-type]
        )
        with self._tracks.transaction(track_id):
            self._apply(track, ordered)
            self._points.assign_track([p.id for p in ordered], track_id)
            self._tracks.save(track)
        self._log.debug(
            "Created track %s for user %s with %d points (%.1f m)",
            track.id,
            track.user_id,
            track.point_count,
            track.distance,
        )
        return track

    def recalculate(self, track: Track) -> Track | None:
        """Re-derive a track from its current points.

        Idempotent. A track left with fewer than two points is destroyed and
        None is returned.
        """

        with self._tracks.transaction(track.id):
            points = self._points.points_for_track(track.id)
            if len(points) < 2:
                self.destroy(track.id)
                return None
            self._apply(track, points)
            self._tracks.save(track)
        return track

    def destroy(self, track_id: int) -> None:
        """Detach the track's points, then delete the track. Points are never deleted."""

        with self._tracks.transaction(track_id):
            detached = self._points.detach_track(track_id)
            self._tracks.delete(track_id)
        self._log.debug("Destroyed track %s (%d points detached)", track_id, detached)

    def update_dominant_mode(self, track: Track) -> str:
        """Mode with the largest summed segment duration; ties go to the mode seen first."""

        totals: dict[str, int] = {}
        for segment in track.segments:
            mode = segment.transportation_mode
            totals[mode] = totals.get(mode, 0) + segment.duration
        if not totals:
            track.dominant_mode = UNKNOWN_MODE
        else:
            track.dominant_mode = max(totals.items(), key=lambda item: item[1])[0]
        return track.dominant_mode

    def _apply(self, track: Track, points: Sequence[Point]) -> None:
        stats = compute_track_stats(points, self._distance_fn)
        track.start_at = stats.start_at
        track.end_at = stats.end_at
        track.distance = stats.distance
        track.duration = stats.duration
        track.avg_speed = stats.avg_speed
        track.max_speed = stats.max_speed
        track.path = stats.path
        track.point_count = stats.point_count
        track.elevation_gain = stats.elevation_gain
        track.elevation_loss = stats.elevation_loss
        track.elevation_max = stats.elevation_max
        track.elevation_min = stats.elevation_min
        track.segments = self._build_segments(track.id, points)
        self.update_dominant_mode(track)

    def _build_segments(self, track_id: int, points: Sequence[Point]) -> List[TrackSegment]:
        segments: List[TrackSegment] = []
        expected_start = 0
        for mode, start_index, end_index in self._mode_classifier(points):
            if start_index != expected_start or end_index < start_index:
                _LOG.warning(
                    "Discarding non-contiguous mode span %s[%s:%s] for track %s",
                    mode,
                    start_index,
                    end_index,
                    track_id,
                )
                continue
            end_index = min(end_index, len(points) - 1)
            span = points[start_index : end_index + 1]
            segments.append(
                TrackSegment(
                    track_id=track_id,
                    transportation_mode=mode,
                    start_index=start_index,
                    end_index=end_index,
                    distance=round(sum_distance(span, self._distance_fn), 2),
                    duration=int(span[-1].timestamp) - int(span[0].timestamp),  # type: ignore[arg-type]
                )
            )
            expected_start = end_index + 1
        return segments


__all__ = [
    "ModeClassifier",
    "TrackBuilder",
    "TrackStats",
    "compute_track_stats",
    "single_mode_classifier",
    "sum_distance",
]
