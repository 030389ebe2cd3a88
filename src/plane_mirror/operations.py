"""
Tracked async operations with explicit pending/success/failure phases.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

PENDING = "pending"
SUCCESS = "success"
FAILURE = "failure"


@dataclass
class Operation:
    name: str
    phase: str = PENDING
    started_at: float = 0.0
    finished_at: float | None = None
    result: Any = None
    error: str | None = None
    error_code: str | None = None

    @property
    def done(self) -> bool:
        return self.phase != PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "phase": self.phase,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "result": self.result,
            "error": self.error,
            "errorCode": self.error_code,
        }


class OperationTracker:
    """Runs awaitables and records the latest operation per name."""

    def __init__(self):
        self._latest: dict[str, Operation] = {}

    def get(self, name: str) -> Operation | None:
        return self._latest.get(name)

    async def run(self, name: str, awaitable: Awaitable[Any]) -> Operation:
        """Await `awaitable`; failures land on the returned operation instead of raising."""
        operation = Operation(name=name, started_at=time.time())
        self._latest[name] = operation
        try:
            operation.result = await awaitable
            operation.phase = SUCCESS
        except Exception as exc:
            operation.phase = FAILURE
            operation.error = str(exc) or exc.__class__.__name__
            operation.error_code = getattr(exc, "code", exc.__class__.__name__)
            logger.warning("Operation %s failed: %s", name, operation.error)
        finally:
            operation.finished_at = time.time()
        return operation

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: op.to_dict() for name, op in self._latest.items()}
