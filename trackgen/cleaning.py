"""Clear a time window of existing tracks before it is regenerated."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .storage import PointRepository, TrackRepository
from .track_builder import TrackBuilder


@dataclass(slots=True)
class CleanupResult:
    tracks_touched: int = 0
    points_detached: int = 0
    tracks_destroyed: int = 0
    tracks_split: int = 0


class RangeCleaner:
    """Detach every point in ``[start_at, end_at)`` from its track.

    Tracks overlapping the window keep their points outside it. A track left
    with fewer than two points is destroyed; one left with points on both
    sides of the window is split in two so no track spans a hole.
    """

    def __init__(
        self,
        points: PointRepository,
        tracks: TrackRepository,
        builder: TrackBuilder,
        logger: logging.Logger | None = None,
    ) -> None:
        self._points = points
        self._tracks = tracks
        self._builder = builder
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def clean(self, user_id: int, start_at: int, end_at: int) -> CleanupResult:
        result = CleanupResult()
        if end_at <= start_at:
            return result
        overlapping = self._tracks.for_user(user_id, start_at, end_at)
        if not overlapping:
            return result
        self._log.info(
            "Cleaning %d overlapping tracks for user %s in window %s -> %s",
            len(overlapping),
            user_id,
            start_at,
            end_at,
        )
        for track in overlapping:
            with self._tracks.transaction(track.id):
                members = self._points.points_for_track(track.id)
                inside = [p.id for p in members if start_at <= p.timestamp < end_at]  # type: ignore[operator]
                if not inside:
                    continue
                result.tracks_touched += 1
                result.points_detached += self._points.detach(inside)
                after = [p for p in members if p.timestamp >= end_at]  # type: ignore[operator]
                before = [p for p in members if p.timestamp < start_at]  # type: ignore[operator]
                if before and after:
                    # The tail outside the window becomes its own track.
                    self._points.detach([p.id for p in after])
                    if len(after) >= 2:
                        self._builder.build(after)
                        result.tracks_split += 1
                if self._builder.recalculate(track) is None:
                    result.tracks_destroyed += 1
        self._log.debug(
            "Cleaned window for user %s: %d points detached, %d tracks destroyed",
            user_id,
            result.points_detached,
            result.tracks_destroyed,
        )
        return result


__all__ = ["CleanupResult", "RangeCleaner"]
