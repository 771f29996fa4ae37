# src/focus_sync/core/notifier.py

from __future__ import annotations

import logging

from .ports import NoticeLevel

logger = logging.getLogger(__name__)

_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.WARNING: logging.WARNING,
    NoticeLevel.ERROR: logging.ERROR,
}


class LoggingNotifier:
    """Default Notifier: routes user notices into the log (headless use)."""

    def notify(self, level: NoticeLevel, title: str, message: str) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), "%s: %s", title, message)
