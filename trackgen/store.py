"""Key-value store with per-key TTL, set-if-absent and atomic counters.

Sessions, buffers and debounce flags all live here. The in-memory
implementation keeps every operation behind one lock so increments are never
lost, and hands out per-key locks for read/modify/write sequences that span
several calls.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional

from cachetools import TLRUCache

from .config import STORE_MAX_ENTRIES

__all__ = ["KeyedLocks", "MemoryKeyValueStore"]

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


def _time_to_use(_key: str, entry: _Entry, _now: float) -> float:
    return entry.expires_at


class _EvictionLoggingCache(TLRUCache):
    """TLRUCache that reports live entries pushed out by the size limit.

    Expired entries are dropped through ``expire()`` and are not reported.
    """

    def popitem(self):
        key, value = super().popitem()
        _LOG.warning(
            "Store full (maxsize=%s); evicted live key %s. Raise STORE_MAX_ENTRIES.",
            self.maxsize,
            key,
        )
        return key, value


@dataclass(slots=True)
class _HeldLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class KeyedLocks:
    """Reentrant locks created per key on demand.

    A lock lives only while some caller holds or waits on it, so the registry
    stays as small as the set of keys currently in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _HeldLock] = {}

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Hold the locks for ``keys``, taken in sorted order."""

        ordered = sorted(set(keys))  # type: ignore[type-var]
        with self._guard:
            held = []
            for key in ordered:
                entry = self._locks.get(key)
                if entry is None:
                    entry = self._locks[key] = _HeldLock()
                entry.holders += 1
                held.append(entry)
        try:
            with ExitStack() as stack:
                for entry in held:
                    stack.enter_context(entry.lock)
                yield
        finally:
            with self._guard:
                for key, entry in zip(ordered, held):
                    entry.holders -= 1
                    if entry.holders == 0:
                        self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class MemoryKeyValueStore:
    """Thread-safe in-process store backed by ``cachetools.TLRUCache``."""

    def __init__(
        self,
        max_entries: int = STORE_MAX_ENTRIES,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timer = timer
        self._cache: TLRUCache[str, _Entry] = _EvictionLoggingCache(
            maxsize=max(1, max_entries), ttu=_time_to_use, timer=timer
        )
        self._lock = threading.RLock()
        self._key_locks = KeyedLocks()
        self._log = logging.getLogger(self.__class__.__name__)

    def _expiry(self, ttl: Optional[float]) -> float:
        if ttl is None:
            return math.inf
        return self._timer() + ttl

    def _entry(self, key: str) -> _Entry | None:
        return self._cache.get(key)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entry(key)
            return default if entry is None else entry.value

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._entry(key) is not None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._cache[key] = _Entry(value, self._expiry(ttl))

    def set_if_absent(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store ``value`` only when ``key`` is missing; True when this call stored it."""

        with self._lock:
            if self._entry(key) is not None:
                return False
            self._cache[key] = _Entry(value, self._expiry(ttl))
            return True

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._cache.pop(key, None) is not None:
                    removed += 1
        return removed

    def delete_if(self, key: str, expected: Any) -> bool:
        """Delete ``key`` only while it still holds ``expected``."""

        with self._lock:
            entry = self._entry(key)
            if entry is None or entry.value != expected:
                return False
            del self._cache[key]
            return True

    def incr(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        """Atomically add ``amount``; a missing key starts at zero with ``ttl``.

        Existing keys keep their original expiry.
        """

        with self._lock:
            entry = self._entry(key)
            if entry is None:
                entry = _Entry(0, self._expiry(ttl))
            entry.value = int(entry.value) + amount
            self._cache[key] = entry
            return entry.value

    def incr_bounded(
        self,
        key: str,
        amount: int,
        maximum: int,
        ttl: Optional[float] = None,
    ) -> int | None:
        """Atomic increment that refuses to move the counter past ``maximum``.

        Returns the new value, or None when the increment was rejected.
        """

        with self._lock:
            current = self._entry(key)
            value = int(current.value) if current is not None else 0
            if value + amount > maximum:
                return None
            return self.incr(key, amount, ttl=ttl)

    def ttl_remaining(self, key: str) -> float | None:
        with self._lock:
            entry = self._entry(key)
            if entry is None or math.isinf(entry.expires_at):
                return None
            return max(0.0, entry.expires_at - self._timer())

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self._cache.expire()
            return [
                key
                for key in list(self._cache.keys())
                if key.startswith(prefix) and self._entry(key) is not None
            ]

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold an exclusive lock scoped to ``key`` for multi-step updates."""

        with self._key_locks.hold(key):
            yield

    @property
    def held_locks(self) -> int:
        return len(self._key_locks)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
