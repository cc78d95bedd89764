"""Gap-rule segmentation of ordered point sequences.

This is the canonical implementation of the rule: a run of points continues
while every adjacent pair is at most ``time_threshold`` apart in time and at
most ``distance_threshold`` apart in space. The first pair that violates
either bound starts a new run. Runs shorter than two points cannot become
tracks and are dropped by :func:`iter_segments`.

Points without a timestamp are skipped entirely. Points without usable
coordinates stay in their run but contribute zero distance, so a single noisy
fix never splits a trip in two.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List

from ..geo import DistanceFn, geodesic_distance
from ..models import Point, TrackingSettings

Segment = List[Point]


@dataclass(frozen=True, slots=True)
class GapRule:
    time_threshold_seconds: float
    distance_threshold_meters: float

    @classmethod
    def from_settings(cls, settings: TrackingSettings) -> "GapRule":
        return cls(
            time_threshold_seconds=settings.time_threshold_seconds,
            distance_threshold_meters=float(settings.distance_threshold_meters),
        )

    def time_gap_ok(self, previous: Point, current: Point) -> bool:
        gap = int(current.timestamp) - int(previous.timestamp)  # type: ignore[arg-type]
        return gap <= self.time_threshold_seconds

    def distance_gap_ok(
        self,
        previous: Point,
        current: Point,
        distance_fn: DistanceFn = geodesic_distance,
    ) -> bool:
        if not (previous.has_coordinates and current.has_coordinates):
            return True
        return distance_fn(previous, current) <= self.distance_threshold_meters

    def connects(
        self,
        previous: Point,
        current: Point,
        distance_fn: DistanceFn = geodesic_distance,
    ) -> bool:
        """True when ``current`` may follow ``previous`` in the same run."""

        return self.time_gap_ok(previous, current) and self.distance_gap_ok(
            previous, current, distance_fn
        )


def iter_runs(
    points: Iterable[Point],
    rule: GapRule,
    distance_fn: DistanceFn = geodesic_distance,
) -> Iterator[Segment]:
    """Yield every maximal run, single points included."""

    current: Segment = []
    for point in points:
        if point.timestamp is None:
            continue
        if current and not rule.connects(current[-1], point, distance_fn):
            yield current
            current = []
        current.append(point)
    if current:
        yield current


def iter_segments(
    points: Iterable[Point],
    rule: GapRule,
    distance_fn: DistanceFn = geodesic_distance,
    min_size: int = 2,
) -> Iterator[Segment]:
    for run in iter_runs(points, rule, distance_fn):
        if len(run) >= min_size:
            yield run


def split_into_segments(
    points: Iterable[Point],
    rule: GapRule,
    distance_fn: DistanceFn = geodesic_distance,
) -> List[Segment]:
    return list(iter_segments(points, rule, distance_fn))


__all__ = ["GapRule", "Segment", "iter_runs", "iter_segments", "split_into_segments"]
