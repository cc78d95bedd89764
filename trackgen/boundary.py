"""Reconcile tracks across chunk edges once every chunk has finished.

Chunk workers only ever build tracks out of points inside their own core
range, so the only adjacent pair a worker never looks at is the one straddling
each chunk edge. For every edge the resolver takes the last point before it
and the first point at or after it; if those two connect under the gap rule
they end up in the same track:

* two different tracks are merged (the later one is absorbed);
* a lone point joins the track on the other side;
* two lone points form a new two-point track.

Edges are processed in time order so chains spanning several chunks collapse
into one track. Running the resolver twice changes nothing the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List

from .geo import DistanceFn, geodesic_distance
from .models import Point
from .notifications import LoggingNotifier
from .scheduling import RetryPolicy
from .segmentation import GapRule
from .sessions import SessionManager
from .storage import PointRepository, TrackRepository
from .track_builder import TrackBuilder

RESOLVER_LOCK_TTL_SECONDS = 600


@dataclass(slots=True)
class BoundaryOutcome:
    """What one resolver pass changed."""

    boundaries_checked: int = 0
    tracks_merged: int = 0
    points_attached: int = 0
    tracks_created: int = 0
    tracks_destroyed: int = 0

    @property
    def net_tracks(self) -> int:
        return self.tracks_created - self.tracks_destroyed

    @property
    def changed(self) -> bool:
        return bool(self.tracks_merged or self.points_attached or self.tracks_created)


class BoundaryResolver:
    def __init__(
        self,
        points: PointRepository,
        tracks: TrackRepository,
        builder: TrackBuilder,
        *,
        distance_fn: DistanceFn = geodesic_distance,
        logger: logging.Logger | None = None,
    ) -> None:
        self._points = points
        self._tracks = tracks
        self._builder = builder
        self._distance_fn = distance_fn
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def resolve(self, user_id: int, boundaries: Iterable[int], rule: GapRule) -> BoundaryOutcome:
        outcome = BoundaryOutcome()
        for boundary in sorted(set(boundaries)):
            outcome.boundaries_checked += 1
            self._resolve_boundary(user_id, boundary, rule, outcome)
        if outcome.changed:
            self._log.info(
                "Boundary resolution for user %s: %d merged, %d attached, %d created",
                user_id,
                outcome.tracks_merged,
                outcome.points_attached,
                outcome.tracks_created,
            )
        return outcome

    def _resolve_boundary(
        self, user_id: int, boundary: int, rule: GapRule, outcome: BoundaryOutcome
    ) -> None:
        before, after = self._points.adjacent_points(user_id, boundary)
        if before is None or after is None or before.id == after.id:
            return
        if before.track_id is not None and before.track_id == after.track_id:
            return
        if not rule.connects(before, after, self._distance_fn):
            return

        if before.track_id is not None and after.track_id is not None:
            self._merge(before.track_id, after.track_id, outcome)
        elif before.track_id is not None:
            self._attach(after, before.track_id, outcome)
        elif after.track_id is not None:
            self._attach(before, after.track_id, outcome)
        else:
            self._builder.build([before, after])
            outcome.tracks_created += 1
            self._log.debug(
                "Built bridging track for points %s and %s at boundary %s",
                before.id,
                after.id,
                boundary,
            )

    def _merge(self, keep_id: int, absorb_id: int, outcome: BoundaryOutcome) -> None:
        with self._tracks.transaction(keep_id, absorb_id):
            keep = self._tracks.get(keep_id)
            absorb = self._tracks.get(absorb_id)
            if keep is None or absorb is None:
                self._log.warning(
                    "Skipping merge of tracks %s and %s: one no longer exists",
                    keep_id,
                    absorb_id,
                )
                return
            members = [p.id for p in self._points.points_for_track(absorb_id)]
            self._points.assign_track(members, keep_id)
            self._builder.recalculate(keep)
            self._tracks.delete(absorb_id)
        outcome.tracks_merged += 1
        outcome.tracks_destroyed += 1
        self._log.debug(
            "Merged track %s into %s (%d points moved)", absorb_id, keep_id, len(members)
        )

    def _attach(self, point: Point, track_id: int, outcome: BoundaryOutcome) -> None:
        with self._tracks.transaction(track_id):
            track = self._tracks.get(track_id)
            if track is None:
                return
            self._points.assign_track([point.id], track_id)
            self._builder.recalculate(track)
        outcome.points_attached += 1


class BoundaryResolutionTask:
    """Wait for every chunk of a session, then resolve its boundaries.

    While chunks are still outstanding the task reschedules itself using the
    retry policy's delay table. A session that never finishes within
    ``max_attempts`` is failed. A store lock key keeps two copies of the task
    from resolving the same session at once.
    """

    def __init__(
        self,
        session: SessionManager,
        resolver: BoundaryResolver,
        boundaries: List[int],
        rule: GapRule,
        *,
        scheduler=None,
        retry_policy: RetryPolicy | None = None,
        notifier: LoggingNotifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session
        self.resolver = resolver
        self.boundaries = sorted(set(boundaries))
        self.rule = rule
        self.scheduler = scheduler
        self.retry_policy = retry_policy or RetryPolicy()
        self.notifier = notifier or LoggingNotifier()
        self._log = logger or logging.getLogger(self.__class__.__name__)

    @property
    def lock_key(self) -> str:
        return f"{self.session.cache_key}:boundary_resolver"

    def schedule(self, attempt: int = 0) -> None:
        if self.scheduler is None:
            raise RuntimeError("BoundaryResolutionTask.schedule requires a scheduler")
        delay = self.retry_policy.delay_for(attempt)
        self._log.debug(
            "Boundary resolution for session %s scheduled in %.1fs (attempt %d)",
            self.session.session_id,
            delay,
            attempt,
        )
        self.scheduler.schedule(delay, self.run, attempt)

    def run(self, attempt: int = 0) -> BoundaryOutcome | None:
        """One attempt. Returns the outcome when resolution ran, else None."""

        session = self.session
        if not session.exists():
            self._log.warning(
                "Session %s for user %s not found; boundary resolution abandoned",
                session.session_id,
                session.user_id,
            )
            return None
        if session.is_terminal():
            self._log.info(
                "Session %s already %s; skipping boundary resolution",
                session.session_id,
                session.status().value,  # type: ignore[union-attr]
            )
            return None
        if not session.all_chunks_completed():
            self._wait(attempt)
            return None

        if not session.store.set_if_absent(self.lock_key, True, ttl=RESOLVER_LOCK_TTL_SECONDS):
            self._log.info(
                "Boundary resolution already running for session %s", session.session_id
            )
            return None
        try:
            return self.resolve_now()
        finally:
            session.store.delete(self.lock_key)

    def resolve_now(self) -> BoundaryOutcome | None:
        session = self.session
        try:
            outcome = self.resolver.resolve(session.user_id, self.boundaries, self.rule)
        except Exception as exc:
            reason = f"Boundary resolution failed: {exc}"
            self._log.error(
                "Boundary resolution failed for user %s, session %s",
                session.user_id,
                session.session_id,
                exc_info=True,
            )
            if session.mark_failed(reason):
                self.notifier.session_failed(session.user_id, session.session_id, reason)
            return None
        if outcome.net_tracks:
            session.adjust_tracks_created(outcome.net_tracks)
        session.mark_completed()
        return outcome

    def _wait(self, attempt: int) -> None:
        session = self.session
        next_attempt = attempt + 1
        if self.retry_policy.exhausted(next_attempt) or self.scheduler is None:
            snapshot = session.snapshot()
            done = snapshot.completed_chunks if snapshot else 0
            total = snapshot.total_chunks if snapshot else 0
            reason = (
                f"Chunks did not complete in time ({done}/{total} finished "
                f"after {next_attempt} checks)"
            )
            self._log.error(
                "Giving up on session %s for user %s: %s",
                session.session_id,
                session.user_id,
                reason,
            )
            if session.mark_failed(reason):
                self.notifier.session_failed(session.user_id, session.session_id, reason)
            return
        self._log.debug(
            "Session %s: chunks still running (%.0f%%); retrying boundary resolution",
            session.session_id,
            session.progress_percentage(),
        )
        self.schedule(next_attempt)


__all__ = [
    "BoundaryOutcome",
    "BoundaryResolutionTask",
    "BoundaryResolver",
    "RESOLVER_LOCK_TTL_SECONDS",
]
