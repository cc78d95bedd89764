"""Command line entry point.

Usage:
    trackgen generate --points points.csv --user-id 1 --output tracks.xlsx
    trackgen segments --points points.csv --user-id 1 --output segments.csv
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pandas as pd

from .config import (
    TRACK_DISTANCE_THRESHOLD_METERS,
    TRACK_SEGMENTATION_STRATEGY,
    TRACK_TIME_THRESHOLD_MINUTES,
)
from .errors import TrackGenerationError
from .export import write_tracks
from .models import GenerationMode, Point, TrackingSettings
from .segmentation import GapRule, segment_frame
from .services import TrackGenerationConfig, TrackGenerationService

REQUIRED_COLUMNS = ("id", "timestamp", "latitude", "longitude")


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _timestamps(series: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(series, errors="coerce")
    if numeric.notna().sum() == series.notna().sum():
        return numeric
    parsed = pd.to_datetime(series, utc=True, errors="coerce")
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(seconds=1)


def _optional_float(value: object) -> float | None:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return float(value)  # type: ignore[arg-type]


def load_points_csv(path: str | Path, user_id: int) -> List[Point]:
    """Read ``id,timestamp,latitude,longitude[,altitude]`` rows into points.

    Timestamps may be unix seconds or ISO-8601 strings. Blank or unparseable
    values are kept as missing; the engine decides what to do with them.
    """

    frame = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"{path}: missing required columns {missing}")
    frame["timestamp"] = _timestamps(frame["timestamp"])
    has_altitude = "altitude" in frame.columns
    points: List[Point] = []
    for row in frame.to_dict(orient="records"):
        ts = _optional_float(row["timestamp"])
        points.append(
            Point(
                id=int(row["id"]),
                user_id=user_id,
                timestamp=int(ts) if ts is not None else None,
                latitude=_optional_float(row["latitude"]),
                longitude=_optional_float(row["longitude"]),
                altitude=_optional_float(row["altitude"]) if has_altitude else None,
            )
        )
    return points


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trackgen", description="Derive tracks from timestamped location points."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--points", required=True, help="CSV of points")
        p.add_argument("--user-id", type=int, default=1)
        p.add_argument(
            "--time-threshold",
            type=float,
            default=TRACK_TIME_THRESHOLD_MINUTES,
            help="minutes between points before a new track starts",
        )
        p.add_argument(
            "--distance-threshold",
            type=float,
            default=TRACK_DISTANCE_THRESHOLD_METERS,
            help="metres between points before a new track starts",
        )

    gen = sub.add_parser("generate", help="generate tracks for a range")
    common(gen)
    gen.add_argument("--start", help="range start (ISO-8601 or unix seconds)")
    gen.add_argument("--end", help="range end (ISO-8601 or unix seconds)")
    gen.add_argument(
        "--mode", choices=[m.value for m in GenerationMode], default=GenerationMode.BULK.value
    )
    gen.add_argument("--chunk-hours", type=float, help="chunk size in hours")
    gen.add_argument("--strategy", default=TRACK_SEGMENTATION_STRATEGY)
    gen.add_argument("--workers", type=int, help="parallel chunk workers")
    gen.add_argument("--output", default="tracks.csv", help=".csv or .xlsx")
    gen.add_argument("--include-path", action="store_true", help="add a WKT path column")

    seg = sub.add_parser("segments", help="print the per-segment summary")
    common(seg)
    seg.add_argument("--output", help="write the summary as CSV instead of printing")
    return parser


def _run_generate(args: argparse.Namespace) -> int:
    settings = TrackingSettings(args.time_threshold, args.distance_threshold)
    config = TrackGenerationConfig(
        settings_provider=lambda _user_id: settings,
        strategy=args.strategy,
    )
    if args.workers:
        config.max_workers = args.workers
    service = TrackGenerationService(config=config)
    try:
        service.add_points(load_points_csv(args.points, args.user_id))
        chunk_size = int(args.chunk_hours * 3600) if args.chunk_hours else None
        session_id = service.generate(
            args.user_id,
            start_at=args.start,
            end_at=args.end,
            mode=args.mode,
            chunk_size=chunk_size,
            wait=True,
        )
        if session_id is None:
            logging.warning("Nothing to generate for user %s", args.user_id)
            return 0
        snapshot = service.session(args.user_id, session_id)
        tracks = service.tracks_for(args.user_id)
        write_tracks(args.output, tracks, session=snapshot, include_path=args.include_path)
        logging.info(
            "Session %s %s: %d tracks written to %s",
            session_id,
            snapshot.status.value,
            len(tracks),
            args.output,
        )
        return 0 if snapshot.error is None else 1
    finally:
        service.shutdown()


def _run_segments(args: argparse.Namespace) -> int:
    rule = GapRule(args.time_threshold * 60.0, args.distance_threshold)
    points = sorted(load_points_csv(args.points, args.user_id), key=lambda p: p.sort_key)
    summary = segment_frame(points, rule).drop(columns=["positions"])
    if args.output:
        summary.to_csv(args.output, index=False)
        logging.info("Wrote %d segments to %s", len(summary), args.output)
    else:
        print(summary.to_string(index=False))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        if args.command == "generate":
            return _run_generate(args)
        return _run_segments(args)
    except (FileNotFoundError, ValueError, TrackGenerationError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
