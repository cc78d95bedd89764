"""Benchmark the iterative and vectorized segmenters on synthetic trips."""

from __future__ import annotations

import argparse
import random
import statistics
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Late imports rely on the adjusted sys.path above.
from trackgen.models import Point  # noqa: E402
from trackgen.segmentation import (  # noqa: E402
    GapRule,
    split_into_segments,
    vectorized_segments,
)


@dataclass(slots=True)
class BenchmarkSummary:
    """Aggregated timings for both segmenters."""

    point_count: int
    iterations: int
    segment_count: int
    mean_iterative_ms: float
    mean_vectorized_ms: float
    worst_iterative_ms: float
    worst_vectorized_ms: float


def _build_points(point_count: int, seed: int = 7) -> List[Point]:
    """Trips of 200-800 points 10s apart, separated by 2h stops."""

    rng = random.Random(seed)  # nosec B311 - synthetic data only
    points: List[Point] = []
    ts = 1_700_000_000
    lat, lon = 51.5, -0.12
    while len(points) < point_count:
        trip_len = rng.randint(200, 800)
        for _ in range(min(trip_len, point_count - len(points))):
            lat += rng.uniform(-1e-4, 1e-4)
            lon += rng.uniform(-1e-4, 1e-4)
            points.append(Point(len(points) + 1, 1, ts, lat, lon))
            ts += 10
        ts += 2 * 3600
    return points


def run_benchmark(point_count: int, iterations: int) -> BenchmarkSummary:
    if point_count < 1000:
        raise ValueError("point_count must be at least 1,000")
    if iterations <= 0:
        raise ValueError("iterations must be positive")

    points = _build_points(point_count)
    rule = GapRule(time_threshold_seconds=3600, distance_threshold_meters=500)
    iterative: List[float] = []
    vectorized: List[float] = []
    segment_count = 0
    for _ in range(iterations):
        start = time.perf_counter()
        expected = split_into_segments(points, rule)
        iterative.append(time.perf_counter() - start)

        start = time.perf_counter()
        actual = vectorized_segments(points, rule)
        vectorized.append(time.perf_counter() - start)

        if [[p.id for p in s] for s in expected] != [[p.id for p in s] for s in actual]:
            raise RuntimeError("Segmenters disagree on synthetic data")
        segment_count = len(expected)

    return BenchmarkSummary(
        point_count=point_count,
        iterations=iterations,
        segment_count=segment_count,
        mean_iterative_ms=statistics.fmean(iterative) * 1000.0,
        mean_vectorized_ms=statistics.fmean(vectorized) * 1000.0,
        worst_iterative_ms=max(iterative) * 1000.0,
        worst_vectorized_ms=max(vectorized) * 1000.0,
    )


def _format_summary(summary: BenchmarkSummary) -> Dict[str, float]:
    return {
        "point_count": summary.point_count,
        "iterations": summary.iterations,
        "segment_count": summary.segment_count,
        "mean_iterative_ms": summary.mean_iterative_ms,
        "mean_vectorized_ms": summary.mean_vectorized_ms,
        "worst_iterative_ms": summary.worst_iterative_ms,
        "worst_vectorized_ms": summary.worst_vectorized_ms,
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare iterative and vectorized segmentation",
    )
    parser.add_argument("--points", type=int, default=50000)
    parser.add_argument("--iterations", type=int, default=3)
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    summary = run_benchmark(args.points, args.iterations)
    for key, value in _format_summary(summary).items():
        if key in {"point_count", "iterations", "segment_count"}:
            print(f"{key}: {value}")
        else:
            print(f"{key}: {value:.3f}")


if __name__ == "__main__":
    main()
