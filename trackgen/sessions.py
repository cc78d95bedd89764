"""Shared-state coordination for one parallel generation run.

A session lives in the key-value store under a user-scoped key. The status
record is only changed under a per-key lock; progress counters are separate
keys updated with the store's atomic increment so concurrent chunk workers
never lose an update.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from .config import SESSION_STALE_AFTER_SECONDS, SESSION_TTL_SECONDS
from .models import SessionStatus
from .notifications import LoggingNotifier
from .store import MemoryKeyValueStore
from .utils import format_timestamp

CACHE_KEY_PREFIX = "track_generation"
_COUNTERS = ("completed_chunks", "tracks_created", "heartbeat")


@dataclass(slots=True)
class SessionSnapshot:
    user_id: int
    session_id: str
    status: SessionStatus
    total_chunks: int
    completed_chunks: int
    tracks_created: int
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def progress_percentage(self) -> float:
        if self.total_chunks <= 0:
            return 100.0
        return round(self.completed_chunks / self.total_chunks * 100, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "tracks_created": self.tracks_created,
            "progress": self.progress_percentage,
            "error": self.error,
            "started_at": format_timestamp(int(self.started_at)) if self.started_at else None,
            "completed_at": format_timestamp(int(self.completed_at)) if self.completed_at else None,
            "metadata": dict(self.metadata),
        }


class SessionManager:
    def __init__(
        self,
        store: MemoryKeyValueStore,
        user_id: int,
        session_id: str | None = None,
        *,
        ttl: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.session_id = session_id or str(uuid.uuid4())
        self._ttl = ttl
        self._clock = clock
        self._log = logging.getLogger(self.__class__.__name__)

    # -- keys -------------------------------------------------------------
    @property
    def cache_key(self) -> str:
        return f"{CACHE_KEY_PREFIX}:user:{self.user_id}:session:{self.session_id}"

    def counter_key(self, name: str) -> str:
        return f"{self.cache_key}:{name}"

    # -- lifecycle --------------------------------------------------------
    def create(
        self, total_chunks: int, metadata: Dict[str, Any] | None = None
    ) -> "SessionManager":
        """Write a fresh session and move it straight to ``processing``."""

        if total_chunks < 0:
            raise ValueError("total_chunks must be >= 0")
        now = self._clock()
        self.store.set(
            self.cache_key,
            {
                "status": SessionStatus.PENDING.value,
                "total_chunks": 0,
                "started_at": now,
                "completed_at": None,
                "error": None,
                "metadata": dict(metadata or {}),
            },
            ttl=self._ttl,
        )
        self.store.set(self.counter_key("completed_chunks"), 0, ttl=self._ttl)
        self.store.set(self.counter_key("tracks_created"), 0, ttl=self._ttl)
        self.store.set(self.counter_key("heartbeat"), now, ttl=self._ttl)
        self._update(status=SessionStatus.PROCESSING.value, total_chunks=total_chunks)
        self._log.debug(
            "Created session %s for user %s (%d chunks)",
            self.session_id,
            self.user_id,
            total_chunks,
        )
        return self

    def exists(self) -> bool:
        return self.store.exists(self.cache_key)

    def snapshot(self) -> SessionSnapshot | None:
        data = self.store.get(self.cache_key)
        if data is None:
            return None
        return SessionSnapshot(
            user_id=self.user_id,
            session_id=self.session_id,
            status=SessionStatus(data["status"]),
            total_chunks=int(data["total_chunks"]),
            completed_chunks=self._counter("completed_chunks"),
            tracks_created=self._counter("tracks_created"),
            error=data.get("error"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            metadata=dict(data.get("metadata") or {}),
        )

    def status(self) -> SessionStatus | None:
        data = self.store.get(self.cache_key)
        return SessionStatus(data["status"]) if data else None

    def is_terminal(self) -> bool:
        status = self.status()
        return status is not None and status.is_terminal

    # -- progress ---------------------------------------------------------
    def record_chunk_completed(self, tracks_created: int = 0) -> bool:
        """Count one finished chunk and the tracks it built.

        Returns False when the session is gone or every chunk has already
        reported; the completed counter never exceeds the total.
        """

        data = self.store.get(self.cache_key)
        if data is None:
            self._log.warning(
                "Session %s for user %s not found; dropping chunk completion",
                self.session_id,
                self.user_id,
            )
            return False
        # tracks_created is bumped before completed_chunks.
        if tracks_created:
            self.adjust_tracks_created(tracks_created)
        completed = self.store.incr_bounded(
            self.counter_key("completed_chunks"),
            1,
            int(data["total_chunks"]),
            ttl=self._ttl,
        )
        if completed is None:
            if tracks_created:
                self.adjust_tracks_created(-tracks_created)
            self._log.warning(
                "Session %s already has all %s chunks completed; ignoring extra report",
                self.session_id,
                data["total_chunks"],
            )
            return False
        self.touch()
        return True

    def adjust_tracks_created(self, delta: int) -> int:
        return self.store.incr(self.counter_key("tracks_created"), delta, ttl=self._ttl)

    def touch(self) -> None:
        self.store.set(self.counter_key("heartbeat"), self._clock(), ttl=self._ttl)

    def all_chunks_completed(self) -> bool:
        data = self.store.get(self.cache_key)
        if data is None:
            return False
        return self._counter("completed_chunks") >= int(data["total_chunks"])

    def progress_percentage(self) -> float:
        snap = self.snapshot()
        return snap.progress_percentage if snap else 0.0

    # -- terminal transitions ----------------------------------------------
    def mark_completed(self) -> bool:
        """Transition to ``completed``; a no-op returning False when already terminal."""

        return self._finish(SessionStatus.COMPLETED, None)

    def mark_failed(self, reason: str) -> bool:
        """Transition to ``failed``; a no-op returning False when already terminal."""

        return self._finish(SessionStatus.FAILED, reason)

    def _finish(self, status: SessionStatus, error: str | None) -> bool:
        with self.store.lock(self.cache_key):
            data = self.store.get(self.cache_key)
            if data is None:
                return False
            if SessionStatus(data["status"]).is_terminal:
                return False
            data = dict(data)
            data.update(status=status.value, error=error, completed_at=self._clock())
            self.store.set(self.cache_key, data, ttl=self._ttl)
        self._log.info(
            "Session %s for user %s marked %s%s",
            self.session_id,
            self.user_id,
            status.value,
            f": {error}" if error else "",
        )
        return True

    def _update(self, **changes: Any) -> bool:
        with self.store.lock(self.cache_key):
            data = self.store.get(self.cache_key)
            if data is None:
                return False
            data = dict(data)
            data.update(changes)
            self.store.set(self.cache_key, data, ttl=self._ttl)
        return True

    # -- staleness --------------------------------------------------------
    def last_activity(self) -> float | None:
        heartbeat = self.store.get(self.counter_key("heartbeat"))
        data = self.store.get(self.cache_key)
        started = data.get("started_at") if data else None
        candidates = [v for v in (heartbeat, started) if v is not None]
        return max(candidates) if candidates else None

    def is_stale(self, stale_after: float = SESSION_STALE_AFTER_SECONDS) -> bool:
        status = self.status()
        if status is None or status.is_terminal:
            return False
        last = self.last_activity()
        return last is not None and self._clock() - last > stale_after

    def cleanup(self) -> None:
        self.store.delete(self.cache_key, *(self.counter_key(name) for name in _COUNTERS))

    def _counter(self, name: str) -> int:
        return int(self.store.get(self.counter_key(name), 0) or 0)

    # -- lookup -----------------------------------------------------------
    @classmethod
    def create_for_user(
        cls,
        store: MemoryKeyValueStore,
        user_id: int,
        total_chunks: int,
        metadata: Dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> "SessionManager":
        return cls(store, user_id, **kwargs).create(total_chunks, metadata)

    @classmethod
    def find(
        cls,
        store: MemoryKeyValueStore,
        user_id: int,
        session_id: str,
        **kwargs: Any,
    ) -> "SessionManager | None":
        manager = cls(store, user_id, session_id, **kwargs)
        return manager if manager.exists() else None


def _parse_session_key(key: str) -> tuple[int, str] | None:
    parts = key.split(":")
    if len(parts) != 5 or parts[0] != CACHE_KEY_PREFIX:
        return None
    if parts[1] != "user" or parts[3] != "session":
        return None
    try:
        return int(parts[2]), parts[4]
    except ValueError:
        return None


def reclaim_stale_sessions(
    store: MemoryKeyValueStore,
    notifier: LoggingNotifier | None = None,
    *,
    stale_after: float = SESSION_STALE_AFTER_SECONDS,
    clock: Callable[[], float] = time.time,
) -> List[SessionSnapshot]:
    """Fail every non-terminal session with no progress inside ``stale_after``."""

    notifier = notifier or LoggingNotifier()
    reclaimed: List[SessionSnapshot] = []
    for key in store.keys(f"{CACHE_KEY_PREFIX}:user:"):
        parsed = _parse_session_key(key)
        if parsed is None:
            continue
        user_id, session_id = parsed
        manager = SessionManager(store, user_id, session_id, clock=clock)
        if not manager.is_stale(stale_after):
            continue
        hours = stale_after / 3600
        reason = f"No progress within {hours:g} hours; session marked stale"
        if manager.mark_failed(reason):
            notifier.session_stale(user_id, session_id, reason)
            snapshot = manager.snapshot()
            if snapshot is not None:
                reclaimed.append(snapshot)
    if reclaimed:
        logging.getLogger(__name__).info("Reclaimed %d stale sessions", len(reclaimed))
    return reclaimed


__all__ = ["SessionManager", "SessionSnapshot", "reclaim_stale_sessions"]
