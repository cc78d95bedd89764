"""Delayed task execution and the capped retry delay table."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence

from .config import (
    BOUNDARY_MAX_ATTEMPTS,
    BOUNDARY_RETRY_DELAYS_SECONDS,
    BOUNDARY_RETRY_JITTER,
)

__all__ = ["RetryPolicy", "ThreadingScheduler"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay table for tasks waiting on a precondition.

    Attempt ``n`` waits ``delays[n]`` seconds (the last entry is reused once
    the table runs out) plus up to ``jitter`` of that delay at random.
    """

    delays: Sequence[float] = BOUNDARY_RETRY_DELAYS_SECONDS
    jitter: float = BOUNDARY_RETRY_JITTER
    max_attempts: int = BOUNDARY_MAX_ATTEMPTS

    def base_delay(self, attempt: int) -> float:
        if not self.delays:
            return 0.0
        return float(self.delays[min(max(attempt, 0), len(self.delays) - 1)])

    def delay_for(self, attempt: int) -> float:
        base = self.base_delay(attempt)
        if self.jitter <= 0 or base <= 0:
            return base
        # Jitter spreads retries out; not used for anything security related.
        return base + random.uniform(0.0, base * self.jitter)  # nosec B311

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts > 0 and attempt >= self.max_attempts


class ThreadingScheduler:
    """Run callables after a delay on daemon timer threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: List[threading.Timer] = []
        self._log = logging.getLogger(self.__class__.__name__)

    def schedule(self, delay: float, func: Callable[..., Any], *args: Any) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay), self._run, args=(func, args))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        self._log.debug("Scheduled %s in %.1fs", getattr(func, "__qualname__", func), delay)
        return timer

    def _run(self, func: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            func(*args)
        except Exception:
            self._log.error(
                "Scheduled task %s failed",
                getattr(func, "__qualname__", func),
                exc_info=True,
            )

    def pending(self) -> int:
        with self._lock:
            return sum(1 for t in self._timers if t.is_alive())

    def shutdown(self) -> None:
        """Cancel every timer that has not fired yet."""

        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
