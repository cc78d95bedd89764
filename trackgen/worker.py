"""Chunk worker: build the tracks owned by one time chunk."""

from __future__ import annotations

import logging

from .chunking import ChunkDescriptor
from .errors import ChunkProcessingError
from .notifications import LoggingNotifier
from .segmentation import GapRule, SegmenterFn, iter_segments
from .sessions import SessionManager
from .storage import PointRepository
from .track_builder import TrackBuilder


class ChunkWorker:
    """Process one chunk independently of every other chunk.

    Points are loaded over the chunk's buffer range so segmentation sees the
    neighbourhood, but a track is only built from the points inside the core
    range. A core piece of a single point that still connects across the edge
    is left untracked; boundary resolution attaches it later.
    """

    def __init__(
        self,
        points: PointRepository,
        builder: TrackBuilder,
        *,
        segmenter: SegmenterFn | None = None,
        notifier: LoggingNotifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._points = points
        self._builder = builder
        self._segmenter = segmenter or iter_segments
        self._notifier = notifier or LoggingNotifier()
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def process(self, session: SessionManager, chunk: ChunkDescriptor, rule: GapRule) -> int:
        """Build the chunk's tracks and report them; returns the number created.

        Failures mark the whole session failed. The chunk is not retried: a
        failed range is regenerated from scratch instead.
        """

        if not session.exists():
            self._log.warning(
                "Session %s not found for user %s, skipping chunk %s",
                session.session_id,
                session.user_id,
                chunk.index,
            )
            return 0
        if session.is_terminal():
            self._log.info(
                "Session %s already finished; skipping chunk %s",
                session.session_id,
                chunk.index,
            )
            return 0
        try:
            created = self._process_chunk(session.user_id, chunk, rule)
        except Exception as exc:
            error = ChunkProcessingError(
                f"Chunk {chunk.index} ({chunk.chunk_id}) failed: {exc}"
            )
            reason = str(error)
            self._log.error(
                "Chunk processing failed for user %s, session %s: %s",
                session.user_id,
                session.session_id,
                reason,
                exc_info=True,
            )
            if session.mark_failed(reason):
                self._notifier.session_failed(session.user_id, session.session_id, reason)
            return 0
        session.record_chunk_completed(created)
        self._log.debug(
            "Chunk %s processed for user %s: %d tracks created",
            chunk.index,
            session.user_id,
            created,
        )
        return created

    def _process_chunk(self, user_id: int, chunk: ChunkDescriptor, rule: GapRule) -> int:
        points = self._points.points_between(
            user_id, chunk.buffer_start_at, chunk.buffer_end_at
        )
        if not points:
            return 0
        created = 0
        for segment in self._segmenter(points, rule):
            if not chunk.overlaps_core(segment):
                continue
            owned = chunk.core_points(segment)
            if len(owned) < 2:
                continue
            if any(p.track_id is not None for p in owned):
                self._log.warning(
                    "Chunk %s: %d points already tracked, leaving segment %s..%s alone",
                    chunk.index,
                    sum(1 for p in owned if p.track_id is not None),
                    owned[0].timestamp,
                    owned[-1].timestamp,
                )
                continue
            self._builder.build(owned)
            created += 1
        return created


__all__ = ["ChunkWorker"]
