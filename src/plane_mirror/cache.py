"""
Per-project cache of Plane modules, work items and states.

`CacheStore` is the only owner of `ProjectCache` entries. Entries are swapped
whole on sync and patched field by field after a single-record upsert; lists
are never mutated in place, so a snapshot handed to a reader stays consistent.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

Record = dict[str, Any]
Listener = Callable[[], None]

PATCHABLE_FIELDS = {"modules", "work_items", "states"}


@dataclass
class ProjectCache:
    """Cached picture of one project."""

    modules: list[Record] = field(default_factory=list)
    work_items: list[Record] = field(default_factory=list)
    states: list[Record] = field(default_factory=list)
    last_sync: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "modules": list(self.modules),
            "workItems": list(self.work_items),
            "states": list(self.states),
        }
        if self.last_sync is not None:
            data["lastSync"] = self.last_sync
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> ProjectCache:
        if not isinstance(raw, dict):
            return cls()

        def _records(key: str) -> list[Record]:
            value = raw.get(key)
            return [r for r in value if isinstance(r, dict)] if isinstance(value, list) else []

        last_sync = raw.get("lastSync")
        return cls(
            modules=_records("modules"),
            work_items=_records("workItems"),
            states=_records("states"),
            last_sync=last_sync if isinstance(last_sync, (int, float)) else None,
        )


@dataclass
class PlaneCache:
    projects: dict[str, ProjectCache] = field(default_factory=dict)
    selected_project_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "projects": {pid: cache.to_dict() for pid, cache in self.projects.items()},
            "selectedProjectId": self.selected_project_id,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> PlaneCache:
        if not isinstance(raw, dict):
            return cls()
        projects = raw.get("projects")
        selected = raw.get("selectedProjectId")
        return cls(
            projects={
                str(pid): ProjectCache.from_dict(entry)
                for pid, entry in projects.items()
            }
            if isinstance(projects, dict)
            else {},
            selected_project_id=selected if isinstance(selected, str) and selected else None,
        )


def upsert_record(records: list[Record], record: Record) -> list[Record]:
    """Replace the entry with the same id in place, or append. Returns a new list."""
    updated = list(records)
    for index, existing in enumerate(updated):
        if existing.get("id") == record.get("id"):
            updated[index] = record
            return updated
    updated.append(record)
    return updated


def dedupe_work_items(items: list[Record]) -> list[Record]:
    """Collapse repeated ids: the last occurrence wins, at the first position."""
    by_id: dict[Any, Record] = {}
    for item in items:
        by_id[item.get("id")] = item
    return list(by_id.values())


class CacheStore:
    """Owns the process-wide `PlaneCache` and notifies listeners on change."""

    def __init__(
        self,
        cache: PlaneCache | None = None,
        default_project_id: Callable[[], str | None] | None = None,
    ):
        self._cache = cache or PlaneCache()
        self._default_project_id = default_project_id or (lambda: None)
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    @property
    def selected_project_id(self) -> str | None:
        return self._cache.selected_project_id

    def set_selected_project(self, project_id: str | None) -> None:
        with self._lock:
            self._cache.selected_project_id = project_id or None

    def resolve_project_id(self, project_id: str | None = None) -> str | None:
        return project_id or self._cache.selected_project_id or self._default_project_id() or None

    def has_project(self, project_id: str) -> bool:
        return project_id in self._cache.projects

    def get_project_data(self, project_id: str | None = None) -> ProjectCache:
        """Snapshot of a project's cache, or an empty one. Never raises."""
        active = self.resolve_project_id(project_id)
        with self._lock:
            entry = self._cache.projects.get(active) if active else None
            if entry is None:
                return ProjectCache()
            return replace(entry)

    def replace_project(self, project_id: str, entry: ProjectCache) -> None:
        with self._lock:
            self._cache.projects[project_id] = entry

    def upsert_into(self, project_id: str, field_name: str, record: Record) -> ProjectCache:
        """Merge one record into a project's list field under the store lock."""
        if field_name not in PATCHABLE_FIELDS:
            raise ValueError(f"cannot patch field '{field_name}'")
        with self._lock:
            current = self._cache.projects.get(project_id) or ProjectCache()
            merged = upsert_record(getattr(current, field_name), record)
            entry = replace(current, **{field_name: merged})
            self._cache.projects[project_id] = entry
            return replace(entry)

    def checkpoint(self) -> PlaneCache:
        """Copy of the current cache that `restore` can roll back to."""
        with self._lock:
            return PlaneCache(
                projects=dict(self._cache.projects),
                selected_project_id=self._cache.selected_project_id,
            )

    def restore(self, checkpoint: PlaneCache) -> None:
        with self._lock:
            self._cache = PlaneCache(
                projects=dict(checkpoint.projects),
                selected_project_id=checkpoint.selected_project_id,
            )

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return self._cache.to_dict()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify_changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Cache change listener failed")

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "selectedProjectId": self._cache.selected_project_id,
                "projects": {
                    pid: {
                        "modules": len(entry.modules),
                        "workItems": len(entry.work_items),
                        "states": len(entry.states),
                        "lastSync": entry.last_sync,
                    }
                    for pid, entry in self._cache.projects.items()
                },
            }
