"""Service layer package.

Exports the high-level generation service consumed by job runners and the CLI.
"""

from .generation_service import TrackGenerationConfig, TrackGenerationService

__all__ = ["TrackGenerationConfig", "TrackGenerationService"]
