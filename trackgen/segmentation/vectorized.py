"""Set-based segmentation using pandas window operations.

Same gap rule as :mod:`trackgen.segmentation.segmenter`, evaluated over whole
columns: lag the previous point, flag breaks, and number runs with a running
sum of the break flags. Useful for large backfills where the per-point Python
loop dominates.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np
import pandas as pd

from ..geo import pairwise_distances
from ..models import Point
from .segmenter import GapRule, Segment

SUMMARY_COLUMNS = [
    "segment_id",
    "point_ids",
    "point_count",
    "start_timestamp",
    "end_timestamp",
    "total_distance_meters",
]


def points_frame(points: Sequence[Point]) -> pd.DataFrame:
    """Tabulate points in input order; unusable coordinates become NaN."""

    rows = [
        {
            "position": position,
            "id": point.id,
            "timestamp": int(point.timestamp),
            "latitude": float(point.latitude) if point.has_coordinates else np.nan,  # type: ignore[arg-type]
            "longitude": float(point.longitude) if point.has_coordinates else np.nan,  # type: ignore[arg-type]
        }
        for position, point in enumerate(points)
        if point.timestamp is not None
    ]
    return pd.DataFrame(
        rows, columns=["position", "id", "timestamp", "latitude", "longitude"]
    )


def label_segments(frame: pd.DataFrame, rule: GapRule) -> pd.DataFrame:
    """Add ``distance_meters``, ``is_break`` and ``segment_id`` columns."""

    labelled = frame.copy()
    if labelled.empty:
        for column in ("distance_meters", "is_break", "segment_id"):
            labelled[column] = pd.Series(dtype=float)
        return labelled
    prev_ts = labelled["timestamp"].shift(1)
    time_gap = labelled["timestamp"] - prev_ts
    distances = pairwise_distances(
        labelled["latitude"].shift(1).to_numpy(dtype=float),
        labelled["longitude"].shift(1).to_numpy(dtype=float),
        labelled["latitude"].to_numpy(dtype=float),
        labelled["longitude"].to_numpy(dtype=float),
    )
    is_break = (
        prev_ts.isna()
        | (time_gap > rule.time_threshold_seconds)
        | (pd.Series(distances, index=labelled.index) > rule.distance_threshold_meters)
    )
    labelled["distance_meters"] = distances
    labelled["is_break"] = is_break
    labelled["segment_id"] = is_break.astype(int).cumsum()
    return labelled


def segment_frame(
    points: Sequence[Point], rule: GapRule, min_size: int = 2
) -> pd.DataFrame:
    """One row per segment, mirroring a windowed aggregate query."""

    labelled = label_segments(points_frame(points), rule)
    if labelled.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS + ["positions"])
    labelled["step_distance"] = np.where(
        labelled["is_break"], 0.0, labelled["distance_meters"]
    )
    grouped = labelled.groupby("segment_id", sort=True).agg(
        point_ids=("id", list),
        positions=("position", list),
        point_count=("id", "size"),
        start_timestamp=("timestamp", "min"),
        end_timestamp=("timestamp", "max"),
        total_distance_meters=("step_distance", "sum"),
    )
    summary = grouped[grouped["point_count"] >= min_size].reset_index()
    return summary[SUMMARY_COLUMNS + ["positions"]]


def vectorized_segments(
    points: Sequence[Point], rule: GapRule, min_size: int = 2
) -> List[Segment]:
    points = list(points)
    summary = segment_frame(points, rule, min_size=min_size)
    return [[points[pos] for pos in positions] for positions in summary["positions"]]


__all__ = [
    "SUMMARY_COLUMNS",
    "label_segments",
    "points_frame",
    "segment_frame",
    "vectorized_segments",
]
