"""
Explicit mirror context: settings, cache store and the storage they persist to.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .cache import CacheStore, PlaneCache
from .settings import PlaneSettings

logger = logging.getLogger(__name__)


class Storage(Protocol):
    async def load(self) -> dict[str, Any] | None: ...

    async def save(self, blob: dict[str, Any]) -> None: ...


class MirrorContext:
    """Everything the sync engine reads or writes, handed around explicitly."""

    def __init__(
        self,
        storage: Storage,
        settings: PlaneSettings | None = None,
        cache: PlaneCache | None = None,
    ):
        self.storage = storage
        self.settings = settings or PlaneSettings.resolve()
        self.store = CacheStore(cache, default_project_id=lambda: self.settings.default_project_id)

    @classmethod
    async def load(cls, storage: Storage) -> MirrorContext:
        """Restore settings and cache from storage, or start from defaults."""
        raw = await storage.load() or {}
        settings = PlaneSettings.resolve(raw.get("settings"))
        cache = PlaneCache.from_dict(raw.get("cache"))
        logger.info(
            "Loaded mirror context: %d cached project(s), selected=%s",
            len(cache.projects),
            cache.selected_project_id,
        )
        return cls(storage, settings=settings, cache=cache)

    async def persist(self) -> None:
        await self.storage.save({
            "settings": self.settings.to_dict(),
            "cache": self.store.to_dict(),
        })
