"""Track generation service.

Public entry points for the engine: bulk / daily generation over a time
range (chunked and processed in parallel), incremental per-day generation,
the realtime hook fed by incoming points, and the track / session queries.
Collaborators (per-user thresholds, distance function, mode classifier,
notification sink, scheduler) are injected through
:class:`TrackGenerationConfig`.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Tuple

from ..boundary import BoundaryResolutionTask, BoundaryResolver
from ..chunking import ChunkPlanner, internal_boundaries
from ..cleaning import RangeCleaner
from ..config import (
    BUFFER_TTL_SECONDS,
    INCREMENTAL_GRACE_PERIOD_SECONDS,
    INCREMENTAL_MAX_BUFFER_AGE_SECONDS,
    REALTIME_DEBOUNCE_SECONDS,
    SESSION_STALE_AFTER_SECONDS,
    SESSION_TTL_SECONDS,
    TRACK_BULK_CHUNK_SECONDS,
    TRACK_CHUNK_BUFFER_SECONDS,
    TRACK_DAILY_CHUNK_SECONDS,
    TRACK_DISTANCE_THRESHOLD_METERS,
    TRACK_MAX_WORKERS,
    TRACK_SEGMENTATION_STRATEGY,
    TRACK_TIME_THRESHOLD_MINUTES,
)
from ..debounce import RealtimeDebouncer
from ..errors import InvalidRangeError, SessionNotFoundError
from ..geo import DistanceFn, geodesic_distance
from ..incremental import IncrementalGenerator, IncrementalResult
from ..models import GenerationMode, Point, Track, TrackingSettings
from ..notifications import LoggingNotifier
from ..scheduling import RetryPolicy, ThreadingScheduler
from ..segmentation import GapRule, get_segmenter
from ..sessions import SessionManager, SessionSnapshot, reclaim_stale_sessions
from ..storage import PointRepository, TrackRepository
from ..store import MemoryKeyValueStore
from ..track_builder import ModeClassifier, TrackBuilder
from ..utils import TimeInput, day_bounds, humanize_duration, to_seconds, to_timestamp
from ..worker import ChunkWorker

SettingsProvider = Callable[[int], TrackingSettings]


def _default_settings(user_id: int) -> TrackingSettings:
    return TrackingSettings(
        time_threshold_minutes=TRACK_TIME_THRESHOLD_MINUTES,
        distance_threshold_meters=TRACK_DISTANCE_THRESHOLD_METERS,
    )


@dataclass(slots=True)
class TrackGenerationConfig:
    settings_provider: SettingsProvider = _default_settings
    distance_fn: DistanceFn = geodesic_distance
    mode_classifier: ModeClassifier | None = None
    notifier: LoggingNotifier | None = None
    scheduler: Any = None
    retry_policy: RetryPolicy | None = None
    strategy: str = TRACK_SEGMENTATION_STRATEGY
    max_workers: int = TRACK_MAX_WORKERS
    bulk_chunk_seconds: int = TRACK_BULK_CHUNK_SECONDS
    daily_chunk_seconds: int = TRACK_DAILY_CHUNK_SECONDS
    chunk_buffer_seconds: int = TRACK_CHUNK_BUFFER_SECONDS
    session_ttl: int = SESSION_TTL_SECONDS
    stale_after: int = SESSION_STALE_AFTER_SECONDS
    grace_period: int = INCREMENTAL_GRACE_PERIOD_SECONDS
    max_buffer_age: int = INCREMENTAL_MAX_BUFFER_AGE_SECONDS
    buffer_ttl: int = BUFFER_TTL_SECONDS
    debounce_seconds: float = REALTIME_DEBOUNCE_SECONDS
    clock: Callable[[], float] = time.time
    logger: logging.Logger | None = None


class TrackGenerationService:
    def __init__(
        self,
        points: PointRepository | None = None,
        tracks: TrackRepository | None = None,
        store: MemoryKeyValueStore | None = None,
        config: TrackGenerationConfig | None = None,
    ) -> None:
        self.config = config or TrackGenerationConfig()
        cfg = self.config
        self._log = cfg.logger or logging.getLogger(self.__class__.__name__)
        self.points = points if points is not None else PointRepository()
        self.tracks = tracks if tracks is not None else TrackRepository()
        self.store = store if store is not None else MemoryKeyValueStore()
        self.notifier = cfg.notifier or LoggingNotifier()
        self.scheduler = cfg.scheduler if cfg.scheduler is not None else ThreadingScheduler()
        self.retry_policy = cfg.retry_policy or RetryPolicy()

        self.builder = TrackBuilder(
            self.points,
            self.tracks,
            distance_fn=cfg.distance_fn,
            mode_classifier=cfg.mode_classifier,
        )
        self.planner = ChunkPlanner(cfg.chunk_buffer_seconds)
        self.cleaner = RangeCleaner(self.points, self.tracks, self.builder)
        self.worker = ChunkWorker(
            self.points,
            self.builder,
            segmenter=get_segmenter(cfg.strategy, cfg.distance_fn),
            notifier=self.notifier,
        )
        self.resolver = BoundaryResolver(
            self.points, self.tracks, self.builder, distance_fn=cfg.distance_fn
        )
        self.incremental = IncrementalGenerator(
            self.store,
            self.points,
            self.tracks,
            self.builder,
            distance_fn=cfg.distance_fn,
            grace_period=cfg.grace_period,
            max_buffer_age=cfg.max_buffer_age,
            buffer_ttl=cfg.buffer_ttl,
            clock=cfg.clock,
        )
        self.debouncer = RealtimeDebouncer(
            self.store,
            self.scheduler,
            self.generate_incremental,
            window=cfg.debounce_seconds,
        )
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    # -- settings ---------------------------------------------------------
    def rule_for(self, user_id: int) -> GapRule:
        return GapRule.from_settings(self.config.settings_provider(user_id))

    # -- bulk / daily -----------------------------------------------------
    def generate(
        self,
        user_id: int,
        start_at: TimeInput | None = None,
        end_at: TimeInput | None = None,
        mode: GenerationMode | str = GenerationMode.BULK,
        chunk_size: int | None = None,
        wait: bool = False,
    ) -> str | None:
        """Regenerate the user's tracks over a range and return the session id.

        Returns None when there is nothing to process. With ``wait`` the call
        blocks until every chunk and the boundary pass have finished;
        otherwise it returns right after dispatching the chunks.
        """

        mode = GenerationMode(mode)
        span = self._resolve_range(user_id, start_at, end_at, mode)
        if span is None:
            self._log.warning("No points to process for user %s", user_id)
            return None
        start, end = span
        if chunk_size is None:
            chunk_size = (
                self.config.daily_chunk_seconds
                if mode is GenerationMode.DAILY
                else self.config.bulk_chunk_seconds
            )
        size = to_seconds(chunk_size)
        rule = self.rule_for(user_id)

        chunks = self.planner.plan(
            start,
            end,
            size,
            has_points=lambda lo, hi: self.points.has_points(user_id, lo, hi),
        )
        if not chunks:
            self._log.warning(
                "No time chunks to process for user %s (%s -> %s)", user_id, start, end
            )
            return None

        cleanup = self.cleaner.clean(user_id, start, end)

        session = SessionManager.create_for_user(
            self.store,
            user_id,
            len(chunks),
            metadata={
                "mode": mode.value,
                "chunk_size": humanize_duration(size),
                "start_at": start,
                "end_at": end,
                "time_threshold_minutes": rule.time_threshold_seconds / 60,
                "distance_threshold_meters": rule.distance_threshold_meters,
            },
            ttl=self.config.session_ttl,
            clock=self.config.clock,
        )
        if cleanup.tracks_split:
            # Tails split off by cleaning count as tracks this run produced.
            session.adjust_tracks_created(cleanup.tracks_split)
        self._log.info(
            "Started %s generation session %s for user %s: %d chunks of %s",
            mode.value,
            session.session_id,
            user_id,
            len(chunks),
            humanize_duration(size),
        )
        task = BoundaryResolutionTask(
            session,
            self.resolver,
            internal_boundaries(chunks) + [start, end],
            rule,
            scheduler=self.scheduler,
            retry_policy=self.retry_policy,
            notifier=self.notifier,
        )

        if wait:
            workers = max(1, min(self.config.max_workers, len(chunks)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                future_map = {
                    executor.submit(self.worker.process, session, chunk, rule): chunk
                    for chunk in chunks
                }
                for future in as_completed(future_map):
                    chunk = future_map[future]
                    try:
                        future.result()
                    except Exception as exc:  # pragma: no cover - worker handles its own errors
                        self._log.error(
                            "Chunk %s for session %s raised: %s",
                            chunk.index,
                            session.session_id,
                            exc,
                            exc_info=True,
                        )
            task.run()
        else:
            executor = self._ensure_executor()
            for chunk in chunks:
                executor.submit(self.worker.process, session, chunk, rule)
            task.schedule()
        return session.session_id

    def _resolve_range(
        self,
        user_id: int,
        start_at: TimeInput | None,
        end_at: TimeInput | None,
        mode: GenerationMode,
    ) -> Tuple[int, int] | None:
        now = int(self.config.clock())
        if mode is GenerationMode.DAILY:
            return day_bounds(start_at if start_at is not None else now)
        span = self.points.time_span(user_id)
        if start_at is None:
            if span is None:
                return None
            start = span[0]
        else:
            start = to_timestamp(start_at)
        if end_at is None:
            end = max(now, span[1] if span else now) + 1
        else:
            end = to_timestamp(end_at)
        if end < start:
            raise InvalidRangeError(f"end_at {end} is before start_at {start}")
        return start, end

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=max(1, self.config.max_workers),
                    thread_name_prefix="trackgen-chunk",
                )
            return self._executor

    # -- incremental / realtime -------------------------------------------
    def generate_incremental(self, user_id: int, day: TimeInput) -> IncrementalResult:
        return self.incremental.run(user_id, day, self.rule_for(user_id))

    def add_points(self, points: Iterable[Point]) -> int:
        return self.points.add_many(points)

    def on_point_created(self, point: Point) -> bool:
        """Store a new point and schedule a debounced incremental run.

        Returns True when this arrival scheduled the run.
        """

        self.points.add(point)
        if point.timestamp is None:
            return False
        return self.debouncer.notify(point.user_id, point.timestamp)

    # -- queries ----------------------------------------------------------
    def tracks_for(
        self,
        user_id: int,
        start_at: TimeInput | None = None,
        end_at: TimeInput | None = None,
    ) -> List[Track]:
        start = to_timestamp(start_at) if start_at is not None else None
        end = to_timestamp(end_at) if end_at is not None else None
        return self.tracks.for_user(user_id, start, end)

    def session(self, user_id: int, session_id: str) -> SessionSnapshot:
        manager = SessionManager.find(
            self.store, user_id, session_id, clock=self.config.clock
        )
        snapshot = manager.snapshot() if manager is not None else None
        if snapshot is None:
            raise SessionNotFoundError(
                f"Session {session_id} not found for user {user_id}"
            )
        return snapshot

    def session_status(self, user_id: int, session_id: str) -> Dict[str, Any]:
        return self.session(user_id, session_id).as_dict()

    # -- maintenance ------------------------------------------------------
    def reclaim_stale_sessions(self) -> List[SessionSnapshot]:
        return reclaim_stale_sessions(
            self.store,
            self.notifier,
            stale_after=self.config.stale_after,
            clock=self.config.clock,
        )

    def shutdown(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        shutdown = getattr(self.scheduler, "shutdown", None)
        if callable(shutdown):
            shutdown()


__all__ = ["SettingsProvider", "TrackGenerationConfig", "TrackGenerationService"]
