"""Notification sink for generation failures and stuck sessions."""

from __future__ import annotations

import logging


class LoggingNotifier:
    """Default sink: report to the log. Hosts subclass this to alert users."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def session_failed(self, user_id: int, session_id: str, reason: str) -> None:
        self._log.error(
            "Track generation failed for user %s (session %s): %s",
            user_id,
            session_id,
            reason,
        )

    def session_stale(self, user_id: int, session_id: str, reason: str) -> None:
        self._log.warning(
            "Track generation session %s for user %s reclaimed: %s",
            session_id,
            user_id,
            reason,
        )


__all__ = ["LoggingNotifier"]
