"""Central error types used across the engine."""

from __future__ import annotations


class TrackGenerationError(RuntimeError):
    """Base error for track generation failures."""


class InvalidSegmentError(TrackGenerationError):
    """Raised when a track is requested from fewer than two points."""


class InvalidRangeError(TrackGenerationError, ValueError):
    """Raised when a requested time range cannot be interpreted."""


class SessionNotFoundError(TrackGenerationError):
    """Raised when a generation session does not exist or has expired."""


class ChunkProcessingError(TrackGenerationError):
    """Raised when a chunk worker cannot finish its chunk."""


__all__ = [
    "TrackGenerationError",
    "InvalidSegmentError",
    "InvalidRangeError",
    "SessionNotFoundError",
    "ChunkProcessingError",
]
