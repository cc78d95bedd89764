"""Tabular export of generated tracks (CSV or Excel)."""

from __future__ import annotations

import logging
from os import PathLike
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from .config import (
    EXPORT_AUTOSIZE_COLUMNS,
    EXPORT_AUTOSIZE_MAX_ROWS,
    EXPORT_AUTOSIZE_MAX_WIDTH,
    EXPORT_AUTOSIZE_MIN_WIDTH,
    EXPORT_AUTOSIZE_PADDING,
    EXPORT_COLUMN_ORDER,
)
from .models import Track
from .sessions import SessionSnapshot

TRACKS_SHEET = "Tracks"
SESSION_SHEET = "Session"
EXCEL_DATETIME_FORMAT = "yyyy-mm-dd hh:mm:ss"
PATH_COLUMN = "Path (WKT)"

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(patternType="solid", fgColor="FFD9E1F2")
HEADER_BORDER = Border(
    left=Side(style="thin", color="000000"),
    right=Side(style="thin", color="000000"),
    top=Side(style="thin", color="000000"),
    bottom=Side(style="thin", color="000000"),
)

PathInput = str | Path | PathLike[str]

LOGGER = logging.getLogger(__name__)


def _utc_naive(ts: int) -> pd.Timestamp:
    # Excel has no timezone support; write UTC wall time.
    return pd.Timestamp(ts, unit="s")


def tracks_to_frame(tracks: Iterable[Track], include_path: bool = False) -> pd.DataFrame:
    rows = [
        {
            "Track ID": t.id,
            "User ID": t.user_id,
            "Start": _utc_naive(t.start_at),
            "End": _utc_naive(t.end_at),
            "Points": t.point_count,
            "Distance (m)": t.distance,
            "Duration (s)": t.duration,
            "Avg Speed (m/s)": t.avg_speed,
            "Max Speed (m/s)": t.max_speed,
            "Elevation Gain (m)": t.elevation_gain,
            "Elevation Loss (m)": t.elevation_loss,
            "Dominant Mode": t.dominant_mode,
            PATH_COLUMN: t.path_wkt,
        }
        for t in tracks
    ]
    columns = EXPORT_COLUMN_ORDER + ([PATH_COLUMN] if include_path else [])
    frame = pd.DataFrame(rows, columns=EXPORT_COLUMN_ORDER + [PATH_COLUMN])
    return frame[columns]


def _session_frame(session: SessionSnapshot) -> pd.DataFrame:
    data = session.as_dict()
    metadata = data.pop("metadata", {}) or {}
    items = list(data.items()) + [(f"metadata.{k}", v) for k, v in metadata.items()]
    return pd.DataFrame(items, columns=["Field", "Value"])


def _style_header_row(ws: Worksheet, row_idx: int = 1, max_col: int | None = None) -> None:
    max_col = max_col or ws.max_column
    for col_idx in range(1, max_col + 1):
        cell = ws.cell(row=row_idx, column=col_idx)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = HEADER_BORDER


def _autosize(ws: Worksheet) -> None:
    if not EXPORT_AUTOSIZE_COLUMNS or ws.max_row > EXPORT_AUTOSIZE_MAX_ROWS:
        return
    for col_cells in ws.columns:
        col_letter = getattr(col_cells[0], "column_letter", None)
        if not col_letter:
            continue
        max_len = max(
            (len(str(cell.value)) for cell in col_cells if cell.value is not None),
            default=0,
        )
        ws.column_dimensions[col_letter].width = min(
            EXPORT_AUTOSIZE_MAX_WIDTH,
            max(EXPORT_AUTOSIZE_MIN_WIDTH, max_len + EXPORT_AUTOSIZE_PADDING),
        )


def write_tracks(
    filepath: PathInput,
    tracks: Sequence[Track],
    session: SessionSnapshot | None = None,
    include_path: bool = False,
) -> Path:
    """Write ``tracks`` to ``filepath``; ``.xlsx`` gets a styled workbook, anything else CSV."""

    path = Path(filepath)
    frame = tracks_to_frame(tracks, include_path=include_path)
    if path.suffix.lower() != ".xlsx":
        frame.to_csv(path, index=False)
        LOGGER.info("Wrote %d tracks to %s", len(frame), path)
        return path

    with pd.ExcelWriter(
        path, engine="openpyxl", datetime_format=EXCEL_DATETIME_FORMAT
    ) as writer:
        if frame.empty:
            pd.DataFrame({"Message": ["No tracks generated."]}).to_excel(
                writer, sheet_name=TRACKS_SHEET, index=False
            )
        else:
            frame.to_excel(writer, sheet_name=TRACKS_SHEET, index=False)
        sheets = [TRACKS_SHEET]
        if session is not None:
            _session_frame(session).to_excel(writer, sheet_name=SESSION_SHEET, index=False)
            sheets.append(SESSION_SHEET)
        for name in sheets:
            ws = writer.sheets[name]
            _style_header_row(ws)
            _autosize(ws)
    LOGGER.info("Wrote %d tracks to workbook %s", len(frame), path)
    return path


__all__ = ["tracks_to_frame", "write_tracks"]
