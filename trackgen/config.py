"""Central configuration for the track generation engine.

All values are constants imported by the rest of the package. Every tunable can
be overridden from the environment (optionally via a local `.env`); malformed
values fall back to the defaults below.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_str(key: str, default: str) -> str:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_delays(key: str, default: tuple[float, ...]) -> tuple[float, ...]:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        delays = tuple(float(item) for item in value.split(",") if item.strip())
    except ValueError:
        return default
    if not delays or any(delay < 0 for delay in delays):
        return default
    return delays


# Load .env from the current directory or any parent folder.
load_dotenv()


# ---------------------------------------------------------------------------
# Segmentation thresholds
# ---------------------------------------------------------------------------
# Defaults used when a user has no thresholds of their own. A gap longer than
# the time threshold, or a jump further than the distance threshold, starts a
# new track.
TRACK_TIME_THRESHOLD_MINUTES = _env_float("TRACK_TIME_THRESHOLD_MINUTES", 60.0)
TRACK_DISTANCE_THRESHOLD_METERS = _env_float("TRACK_DISTANCE_THRESHOLD_METERS", 500.0)

# "iterative" walks points one by one; "vectorized" runs the same gap rule as
# a pandas window computation. Both produce identical segments.
TRACK_SEGMENTATION_STRATEGY = _env_str("TRACK_SEGMENTATION_STRATEGY", "iterative")

# Ellipsoid used for geodesic distances.
GEODESIC_ELLIPSOID = _env_str("GEODESIC_ELLIPSOID", "WGS84")


# ---------------------------------------------------------------------------
# Bulk generation
# ---------------------------------------------------------------------------
# Chunk sizes (seconds) for full backfills and for daily / recent re-runs.
TRACK_BULK_CHUNK_SECONDS = _env_int("TRACK_BULK_CHUNK_SECONDS", 24 * 3600)
TRACK_DAILY_CHUNK_SECONDS = _env_int("TRACK_DAILY_CHUNK_SECONDS", 6 * 3600)

# Context margin (seconds) loaded on either side of a chunk. Segments that
# only live inside the margin belong to the neighbouring chunk.
TRACK_CHUNK_BUFFER_SECONDS = _env_int("TRACK_CHUNK_BUFFER_SECONDS", 3600)

# Threads used to process chunks in parallel.
TRACK_MAX_WORKERS = _env_int("TRACK_MAX_WORKERS", 4)

# Stored values are clamped to fit the persisted column precision.
TRACK_MAX_STORED_DISTANCE_M = 999_999.99
TRACK_MAX_STORED_SPEED = 999_999.99


# ---------------------------------------------------------------------------
# Generation sessions
# ---------------------------------------------------------------------------
SESSION_TTL_SECONDS = _env_int("SESSION_TTL_SECONDS", 24 * 3600)

# Sessions with no progress for this long are failed by the maintenance sweep.
SESSION_STALE_AFTER_SECONDS = _env_int("SESSION_STALE_AFTER_SECONDS", 4 * 3600)

# Delay table (seconds) used while boundary resolution waits for chunks. The
# last entry is reused for every later attempt.
BOUNDARY_RETRY_DELAYS_SECONDS = _env_delays(
    "BOUNDARY_RETRY_DELAYS_SECONDS", (5.0, 10.0, 30.0, 60.0, 120.0, 180.0)
)
# Random fraction of the delay added on top to spread out retries.
BOUNDARY_RETRY_JITTER = _env_float("BOUNDARY_RETRY_JITTER", 0.25)
# Give up (and fail the session) after this many attempts. 0 disables the cap.
BOUNDARY_MAX_ATTEMPTS = _env_int("BOUNDARY_MAX_ATTEMPTS", 120)


# ---------------------------------------------------------------------------
# Incremental / realtime generation
# ---------------------------------------------------------------------------
# Segments whose last point is younger than this stay buffered.
INCREMENTAL_GRACE_PERIOD_SECONDS = _env_int("INCREMENTAL_GRACE_PERIOD_SECONDS", 300)

# Single-point runs older than this are dropped from the buffer.
INCREMENTAL_MAX_BUFFER_AGE_SECONDS = _env_int(
    "INCREMENTAL_MAX_BUFFER_AGE_SECONDS", 3600
)

BUFFER_TTL_SECONDS = _env_int("BUFFER_TTL_SECONDS", 7 * 24 * 3600)

# Quiet window collapsing bursts of incoming points into one run.
REALTIME_DEBOUNCE_SECONDS = _env_float("REALTIME_DEBOUNCE_SECONDS", 45.0)


# ---------------------------------------------------------------------------
# Key-value store
# ---------------------------------------------------------------------------
STORE_MAX_ENTRIES = _env_int("STORE_MAX_ENTRIES", 100_000)


# ---------------------------------------------------------------------------
# Export formatting
# ---------------------------------------------------------------------------
EXPORT_AUTOSIZE_COLUMNS = _env_bool("EXPORT_AUTOSIZE_COLUMNS", True)
EXPORT_AUTOSIZE_MAX_WIDTH = 50  # characters
EXPORT_AUTOSIZE_MIN_WIDTH = 6  # characters
EXPORT_AUTOSIZE_PADDING = 2  # extra characters added to the detected max
EXPORT_AUTOSIZE_MAX_ROWS = 5000  # skip autosize for very large sheets

EXPORT_COLUMN_ORDER = [
    "Track ID",
    "User ID",
    "Start",
    "End",
    "Points",
    "Distance (m)",
    "Duration (s)",
    "Avg Speed (m/s)",
    "Max Speed (m/s)",
    "Elevation Gain (m)",
    "Elevation Loss (m)",
    "Dominant Mode",
]
