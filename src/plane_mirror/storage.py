"""
JSON file persistence for settings and cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DATA_PATH = os.path.expanduser(
    os.getenv("PLANE_MIRROR_DATA_PATH", "~/.cache/plane-mirror/data.json")
)


class JsonFileStorage:
    """Stores one JSON blob in a file; writes are atomic and run off the loop."""

    def __init__(self, path: str | Path = DATA_PATH):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable data file %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring data file %s: top-level value is not an object", self._path)
            return None
        return data

    def _write(self, blob: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(blob, handle, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def load(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read)

    async def save(self, blob: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, blob)
