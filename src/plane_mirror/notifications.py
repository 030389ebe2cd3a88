"""
User-facing notifications. Fire-and-forget; no acknowledgement.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Protocol

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


class Notifier(Protocol):
    def notify(self, message: str, *, error: bool = False) -> None: ...


class LogNotifier:
    """Logs notifications and keeps a bounded history for later display."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self._history: deque[dict[str, Any]] = deque(maxlen=limit)

    def notify(self, message: str, *, error: bool = False) -> None:
        if error:
            logger.warning("%s", message)
        else:
            logger.info("%s", message)
        self._history.append({"message": message, "error": error, "at": time.time()})

    def recent(self) -> list[dict[str, Any]]:
        return list(self._history)
