"""Split a generation range into time chunks for parallel processing."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Sequence

from .config import TRACK_CHUNK_BUFFER_SECONDS
from .models import Point
from .utils import format_timestamp, to_seconds

HasPoints = Callable[[int, int], bool]


@dataclass(frozen=True, slots=True)
class ChunkDescriptor:
    """One unit of parallel work.

    ``[start_at, end_at)`` is the core range the chunk owns; the buffer range
    widens it by the margin on both sides and is only used as segmentation
    context.
    """

    index: int
    chunk_id: str
    start_at: int
    end_at: int
    buffer_start_at: int
    buffer_end_at: int

    def core_contains(self, timestamp: int) -> bool:
        return self.start_at <= timestamp < self.end_at

    def overlaps_core(self, segment: Sequence[Point]) -> bool:
        if not segment:
            return False
        first = int(segment[0].timestamp)  # type: ignore[arg-type]
        last = int(segment[-1].timestamp)  # type: ignore[arg-type]
        return first < self.end_at and last >= self.start_at

    def core_points(self, segment: Sequence[Point]) -> List[Point]:
        return [p for p in segment if self.core_contains(int(p.timestamp))]  # type: ignore[arg-type]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "chunk_id": self.chunk_id,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "buffer_start_at": self.buffer_start_at,
            "buffer_end_at": self.buffer_end_at,
            "start_time": format_timestamp(self.start_at),
            "end_time": format_timestamp(self.end_at),
        }


class ChunkPlanner:
    def __init__(self, buffer_seconds: int | timedelta = TRACK_CHUNK_BUFFER_SECONDS):
        self.buffer_seconds = to_seconds(buffer_seconds)
        if self.buffer_seconds < 0:
            raise ValueError("buffer_seconds must be >= 0")
        self._log = logging.getLogger(self.__class__.__name__)

    def plan(
        self,
        start_at: int,
        end_at: int,
        chunk_size: int | timedelta,
        has_points: HasPoints | None = None,
    ) -> List[ChunkDescriptor]:
        """Partition ``[start_at, end_at)`` into consecutive chunks.

        With ``has_points``, chunks whose buffer range holds no points are
        dropped; the rest keep consecutive indexes. Returns an empty list for
        an empty or inverted range.
        """

        size = to_seconds(chunk_size)
        if size <= 0:
            raise ValueError("chunk_size must be positive")
        if end_at <= start_at:
            self._log.debug("Empty range %s -> %s; no chunks planned", start_at, end_at)
            return []
        chunks: List[ChunkDescriptor] = []
        skipped = 0
        cursor = start_at
        while cursor < end_at:
            chunk_end = min(cursor + size, end_at)
            buffer_start = cursor - self.buffer_seconds
            buffer_end = chunk_end + self.buffer_seconds
            if has_points is not None and not has_points(buffer_start, buffer_end):
                skipped += 1
                cursor = chunk_end
                continue
            chunks.append(
                ChunkDescriptor(
                    index=len(chunks),
                    chunk_id=str(uuid.uuid4()),
                    start_at=cursor,
                    end_at=chunk_end,
                    buffer_start_at=buffer_start,
                    buffer_end_at=buffer_end,
                )
            )
            cursor = chunk_end
        self._log.debug(
            "Planned %d chunks of %ss over %s -> %s (%d empty skipped)",
            len(chunks),
            size,
            start_at,
            end_at,
            skipped,
        )
        return chunks


def internal_boundaries(chunks: Sequence[ChunkDescriptor]) -> List[int]:
    """Core edges between consecutive chunks.

    Where empty chunks were skipped both the earlier chunk's end and the
    later chunk's start are listed.
    """

    edges: List[int] = []
    for previous, chunk in zip(chunks, chunks[1:]):
        if previous.end_at != chunk.start_at:
            edges.append(previous.end_at)
        edges.append(chunk.start_at)
    return edges


__all__ = ["ChunkDescriptor", "ChunkPlanner", "HasPoints", "internal_boundaries"]
