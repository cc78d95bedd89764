"""Trajectory segmentation: the gap rule and its two implementations."""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from ..geo import DistanceFn, geodesic_distance
from ..models import Point
from .segmenter import GapRule, Segment, iter_runs, iter_segments, split_into_segments
from .vectorized import segment_frame, vectorized_segments

SegmenterFn = Callable[[Sequence[Point], GapRule], Iterable[Segment]]

ITERATIVE = "iterative"
VECTORIZED = "vectorized"


_STRATEGIES = (ITERATIVE, VECTORIZED)


def get_segmenter(
    strategy: str, distance_fn: DistanceFn = geodesic_distance
) -> SegmenterFn:
    """Return the segmenter registered under ``strategy``.

    ``distance_fn`` only applies to the iterative segmenter; the vectorized
    one always computes geodesic distances over whole columns.
    """

    name = strategy.strip().lower()
    if name == ITERATIVE:

        def _iterative(points: Sequence[Point], rule: GapRule) -> Iterable[Segment]:
            return iter_segments(points, rule, distance_fn)

        return _iterative
    if name == VECTORIZED:
        return vectorized_segments
    raise ValueError(
        f"Unknown segmentation strategy {strategy!r}; expected one of {list(_STRATEGIES)}"
    )


__all__ = [
    "GapRule",
    "ITERATIVE",
    "Segment",
    "SegmenterFn",
    "VECTORIZED",
    "get_segmenter",
    "iter_runs",
    "iter_segments",
    "segment_frame",
    "split_into_segments",
    "vectorized_segments",
]
