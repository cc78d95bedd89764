from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from shapely.geometry import LineString

UNKNOWN_MODE = "unknown"


class SessionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class GenerationMode(str, Enum):
    BULK = "bulk"
    DAILY = "daily"


@dataclass(frozen=True, slots=True)
class Point:
    """A single geolocated sample. Only ``track_id`` ever changes, by replacement."""

    id: int
    user_id: int
    timestamp: Optional[int]
    latitude: Optional[float]
    longitude: Optional[float]
    altitude: Optional[float] = None
    track_id: Optional[int] = None

    @property
    def has_coordinates(self) -> bool:
        lat, lon = self.latitude, self.longitude
        if lat is None or lon is None:
            return False
        try:
            lat_f, lon_f = float(lat), float(lon)
        except (TypeError, ValueError):
            return False
        if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
            return False
        return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.timestamp if self.timestamp is not None else -1, self.id)

    def to_snapshot(self) -> Dict[str, Any]:
        """Plain-dict form used when the point is parked in the key-value store."""

        return {
            "id": self.id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "track_id": self.track_id,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Point":
        return cls(
            id=int(data["id"]),
            user_id=int(data["user_id"]),
            timestamp=data.get("timestamp"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            altitude=data.get("altitude"),
            track_id=data.get("track_id"),
        )


@dataclass(frozen=True, slots=True)
class TrackingSettings:
    """Per-user segmentation thresholds."""

    time_threshold_minutes: float
    distance_threshold_meters: float

    @property
    def time_threshold_seconds(self) -> float:
        return self.time_threshold_minutes * 60.0


@dataclass(slots=True)
class TrackSegment:
    track_id: int
    transportation_mode: str
    start_index: int
    end_index: int
    distance: float = 0.0
    duration: int = 0


@dataclass(slots=True)
class Track:
    id: int
    user_id: int
    start_at: int
    end_at: int
    distance: float = 0.0
    duration: int = 0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    path: LineString | None = None
    dominant_mode: str = UNKNOWN_MODE
    point_count: int = 0
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    elevation_max: float = 0.0
    elevation_min: float = 0.0
    segments: list[TrackSegment] = field(default_factory=list)

    @property
    def path_wkt(self) -> str | None:
        return self.path.wkt if self.path is not None else None

    def overlaps(self, start_at: float, end_at: float) -> bool:
        """True when the track intersects the half-open window ``[start_at, end_at)``."""

        return self.start_at < end_at and self.end_at >= start_at
