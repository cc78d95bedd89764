"""Collapse bursts of incoming points into a single incremental run."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Callable

from .config import REALTIME_DEBOUNCE_SECONDS
from .store import MemoryKeyValueStore
from .utils import TimeInput, to_day

DEBOUNCE_KEY_PREFIX = "track_generation_scheduled"


class RealtimeDebouncer:
    """Schedule at most one incremental run per user and day per quiet window.

    The first arrival for a (user, day) sets a flag with ``set_if_absent`` and
    schedules the run ``window`` seconds later; arrivals while the flag is set
    do nothing, since the pending run will pick their points up. A burst that
    crosses midnight UTC therefore schedules one run per day it touches.

    Each flag carries a token owned by the run it scheduled. When the run
    finishes, whether it succeeded or not, it clears the flag only if the
    token is still its own; a flag set by a later burst is left in place.
    """

    def __init__(
        self,
        store: MemoryKeyValueStore,
        scheduler: Any,
        run_incremental: Callable[[int, Any], Any],
        window: float = REALTIME_DEBOUNCE_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._run_incremental = run_incremental
        self.window = window
        self._log = logger or logging.getLogger(self.__class__.__name__)

    @staticmethod
    def key_for(user_id: int, day: TimeInput) -> str:
        return f"{DEBOUNCE_KEY_PREFIX}:{user_id}:{to_day(day).isoformat()}"

    def is_scheduled(self, user_id: int, day: TimeInput) -> bool:
        return self._store.exists(self.key_for(user_id, day))

    def notify(self, user_id: int, timestamp: TimeInput) -> bool:
        """Register an arrival; True when this call scheduled a run."""

        day = to_day(timestamp)
        token = uuid.uuid4().hex
        if not self._store.set_if_absent(self.key_for(user_id, day), token, ttl=self.window):
            return False
        self._scheduler.schedule(self.window, self._run, user_id, day, token)
        self._log.debug(
            "Scheduled incremental run for user %s (%s) in %.0fs", user_id, day, self.window
        )
        return True

    def _run(self, user_id: int, day: date, token: str) -> None:
        try:
            self._run_incremental(user_id, day)
        finally:
            self._store.delete_if(self.key_for(user_id, day), token)


__all__ = ["DEBOUNCE_KEY_PREFIX", "RealtimeDebouncer"]
