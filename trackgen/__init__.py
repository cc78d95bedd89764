"""Trajectory segmentation and parallel / incremental track generation."""

from .main import main
from .models import GenerationMode, Point, SessionStatus, Track, TrackingSettings
from .errors import (
    InvalidRangeError,
    InvalidSegmentError,
    SessionNotFoundError,
    TrackGenerationError,
)
from .services import TrackGenerationConfig, TrackGenerationService

__all__ = [
    "main",
    "GenerationMode",
    "Point",
    "SessionStatus",
    "Track",
    "TrackingSettings",
    "InvalidRangeError",
    "InvalidSegmentError",
    "SessionNotFoundError",
    "TrackGenerationError",
    "TrackGenerationConfig",
    "TrackGenerationService",
]
