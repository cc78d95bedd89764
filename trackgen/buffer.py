"""Per-user, per-day holding area for points not yet ready to become tracks."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, List

from .config import BUFFER_TTL_SECONDS
from .models import Point
from .store import MemoryKeyValueStore
from .utils import to_day

BUFFER_KEY_PREFIX = "track_buffer"


class PointBuffer:
    """Points parked in the key-value store between incremental runs.

    Entries are stored as plain snapshots and expire after ``ttl`` seconds.
    Callers doing read/modify/write on one buffer hold :meth:`locked`.
    """

    def __init__(
        self,
        store: MemoryKeyValueStore,
        user_id: int,
        day: date | str | int,
        ttl: int = BUFFER_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.day = to_day(day)
        self.ttl = ttl
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def key(self) -> str:
        return f"{BUFFER_KEY_PREFIX}:{self.user_id}:{self.day.isoformat()}"

    def locked(self):
        return self.store.lock(self.key)

    def retrieve(self) -> List[Point]:
        raw = self.store.get(self.key) or []
        points = []
        for item in raw:
            try:
                points.append(Point.from_snapshot(item))
            except (KeyError, TypeError, ValueError):
                self._log.warning("Dropping malformed buffered point in %s: %r", self.key, item)
        return points

    def store_points(self, points: Iterable[Point]) -> int:
        snapshots = [p.to_snapshot() for p in points]
        if not snapshots:
            self.clear()
            return 0
        self.store.set(self.key, snapshots, ttl=self.ttl)
        self._log.debug("Buffered %d points under %s", len(snapshots), self.key)
        return len(snapshots)

    def clear(self) -> None:
        self.store.delete(self.key)

    def exists(self) -> bool:
        return self.store.exists(self.key)

    def __len__(self) -> int:
        return len(self.store.get(self.key) or [])


__all__ = ["BUFFER_KEY_PREFIX", "PointBuffer"]
