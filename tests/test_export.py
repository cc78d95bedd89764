"""Export to CSV / Excel and the command line entry point."""

from __future__ import annotations

import pandas as pd
from openpyxl import load_workbook

from conftest import DAY_START, make_points, settings
from trackgen.config import EXPORT_COLUMN_ORDER
from trackgen.export import PATH_COLUMN, SESSION_SHEET, TRACKS_SHEET, tracks_to_frame, write_tracks
from trackgen.main import load_points_csv, main


def _generated(make_service):
    service = make_service(settings(minutes=5))
    service.add_points(make_points([0, 60, 120, 1000, 1060]))
    session_id = service.generate(1, wait=True)
    return service, service.session(1, session_id)


def test_tracks_to_frame_columns(make_service):
    service, _ = _generated(make_service)
    tracks = service.tracks_for(1)

    frame = tracks_to_frame(tracks)
    assert list(frame.columns) == EXPORT_COLUMN_ORDER
    assert frame["Points"].tolist() == [3, 2]
    assert frame["Start"].iloc[0] == pd.Timestamp("2024-01-15 00:00:00")

    with_path = tracks_to_frame(tracks, include_path=True)
    assert with_path.columns[-1] == PATH_COLUMN
    assert with_path[PATH_COLUMN].iloc[0].startswith("LINESTRING")


def test_empty_frame_keeps_columns():
    assert list(tracks_to_frame([]).columns) == EXPORT_COLUMN_ORDER


def test_write_csv(make_service, tmp_path):
    service, _ = _generated(make_service)

    path = write_tracks(tmp_path / "tracks.csv", service.tracks_for(1))

    frame = pd.read_csv(path)
    assert len(frame) == 2
    assert list(frame.columns) == EXPORT_COLUMN_ORDER


def test_write_workbook_with_session_sheet(make_service, tmp_path):
    service, snapshot = _generated(make_service)

    path = write_tracks(tmp_path / "tracks.xlsx", service.tracks_for(1), session=snapshot)

    wb = load_workbook(path)
    assert wb.sheetnames == [TRACKS_SHEET, SESSION_SHEET]
    ws = wb[TRACKS_SHEET]
    assert ws.cell(row=1, column=1).value == "Track ID"
    assert ws.cell(row=1, column=1).font.bold
    assert ws.max_row == 3
    fields = {row[0]: row[1] for row in wb[SESSION_SHEET].iter_rows(min_row=2, values_only=True)}
    assert fields["status"] == "completed"
    assert fields["metadata.mode"] == "bulk"


def test_empty_workbook_has_message(tmp_path):
    path = write_tracks(tmp_path / "empty.xlsx", [])

    ws = load_workbook(path)[TRACKS_SHEET]
    assert ws.cell(row=2, column=1).value == "No tracks generated."


def _write_points_csv(path, rows):
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def test_load_points_csv_accepts_iso_and_blank_values(tmp_path):
    path = _write_points_csv(
        tmp_path / "points.csv",
        [
            {"id": 1, "timestamp": "2024-01-15T00:00:00Z", "latitude": 52.0, "longitude": 13.0},
            {"id": 2, "timestamp": "2024-01-15T00:01:00Z", "latitude": None, "longitude": None},
            {"id": 3, "timestamp": None, "latitude": 52.0, "longitude": 13.0},
        ],
    )

    points = load_points_csv(path, user_id=7)

    assert [p.timestamp for p in points] == [DAY_START, DAY_START + 60, None]
    assert points[1].latitude is None
    assert all(p.user_id == 7 for p in points)


def test_cli_generate_writes_workbook(tmp_path):
    points_csv = _write_points_csv(
        tmp_path / "points.csv",
        [
            {"id": p.id, "timestamp": p.timestamp, "latitude": p.latitude, "longitude": p.longitude}
            for p in make_points([0, 60, 120, 1000, 1060])
        ],
    )
    output = tmp_path / "out.xlsx"

    code = main(
        [
            "generate",
            "--points",
            str(points_csv),
            "--time-threshold",
            "5",
            "--start",
            str(DAY_START),
            "--end",
            str(DAY_START + 3600),
            "--chunk-hours",
            "0.25",
            "--output",
            str(output),
        ]
    )

    assert code == 0
    ws = load_workbook(output)[TRACKS_SHEET]
    assert ws.max_row == 3


def test_cli_segments_summary(tmp_path):
    points_csv = _write_points_csv(
        tmp_path / "points.csv",
        [
            {"id": p.id, "timestamp": p.timestamp, "latitude": p.latitude, "longitude": p.longitude}
            for p in make_points([0, 60, 120, 600])
        ],
    )
    output = tmp_path / "segments.csv"

    assert main(["segments", "--points", str(points_csv), "--time-threshold", "5", "--output", str(output)]) == 0

    summary = pd.read_csv(output)
    assert summary["point_count"].tolist() == [3]


def test_cli_reports_bad_input(tmp_path):
    bad = _write_points_csv(tmp_path / "bad.csv", [{"id": 1, "lat": 1.0}])

    assert main(["generate", "--points", str(bad)]) == 2
    assert main(["generate", "--points", str(tmp_path / "missing.csv")]) == 2
