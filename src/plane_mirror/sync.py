"""
Sync orchestration between the Plane API and the local project cache.

A sync rebuilds one project's whole picture (modules, states, work items
across every module plus the unassigned bucket) and swaps it into the cache in
one write. Single-record writes go to Plane first and are then merged into the
cached list, so an edit never costs a full resync.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import Any

from .cache import PlaneCache, ProjectCache, dedupe_work_items
from .context import MirrorContext
from .normalize import extract_id, normalize_work_item
from .notifications import Notifier
from .plane_client import PlaneApiError, PlaneClient
from .settings import PlaneConfigError

logger = logging.getLogger(__name__)

WORK_ITEM_CREATE_FIELDS = ("name", "description_html", "state", "priority", "module")
WORK_ITEM_OPTIONAL_FIELDS = ("start_date", "target_date")
MODULE_WRITABLE_FIELDS = ("name", "description", "status", "start_date", "target_date")


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """
    Like `asyncio.gather`, but the first failure cancels the remaining
    awaitables, and every one of them has finished before this returns.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class PlaneSync:
    """Fetches, normalizes and merges Plane data into a `MirrorContext`."""

    def __init__(self, context: MirrorContext, client: PlaneClient, notifier: Notifier):
        self._context = context
        self._client = client
        self._notifier = notifier
        self.available_projects: list[dict[str, Any]] = []

    @property
    def context(self) -> MirrorContext:
        return self._context

    def _require_connection(self) -> None:
        self._context.settings.require_complete()

    def _resolve_project(self, project_id: str | None = None) -> str:
        active = self._context.store.resolve_project_id(project_id)
        if not active:
            raise PlaneConfigError("No project selected")
        return active

    async def _commit(self, checkpoint: PlaneCache) -> None:
        """Persist the cache; if the save fails, roll back to `checkpoint`."""
        try:
            await self._context.persist()
        except Exception:
            self._context.store.restore(checkpoint)
            raise
        self._context.store.notify_changed()

    async def _fetch_module_items(self, project_id: str, module_id: str) -> list[dict[str, Any]]:
        items = await self._client.list_work_items(project_id, module_id)
        # A module-scoped query is ground truth for membership.
        return [{**item, "module": module_id} for item in items]

    async def sync(self, project_id: str | None = None, notify: bool = True) -> ProjectCache:
        """
        Rebuild the cached picture of one project.

        Nothing is written unless every fetch succeeds; on failure the previous
        entry stays as it was and the error is re-raised after notifying.
        """
        try:
            self._require_connection()
            active = self._resolve_project(project_id)
        except PlaneConfigError as exc:
            self._notifier.notify(str(exc), error=True)
            raise

        try:
            modules, states = await gather_or_cancel(
                self._client.list_modules(active),
                self._client.list_states(active),
            )
            per_module = await gather_or_cancel(
                *(self._fetch_module_items(active, module["id"]) for module in modules)
            )
            unassigned = await self._client.list_work_items(active)
        except Exception as exc:
            logger.warning("Sync of project %s failed: %s", active, exc)
            self._notifier.notify(f"Plane sync failed: {exc}", error=True)
            raise

        work_items = [*unassigned, *(item for items in per_module for item in items)]
        normalized = [normalize_work_item(item) for item in work_items]
        if self._context.settings.dedupe_work_items:
            normalized = dedupe_work_items(normalized)

        entry = ProjectCache(
            modules=modules,
            work_items=normalized,
            states=states,
            last_sync=time.time(),
        )
        store = self._context.store
        checkpoint = store.checkpoint()
        store.replace_project(active, entry)
        store.set_selected_project(active)
        try:
            await self._commit(checkpoint)
        except Exception as exc:
            logger.warning("Could not save sync of project %s: %s", active, exc)
            self._notifier.notify(f"Plane sync failed: {exc}", error=True)
            raise

        logger.info(
            "Synced project %s: %d modules, %d states, %d work items",
            active,
            len(modules),
            len(states),
            len(normalized),
        )
        if notify:
            self._notifier.notify(
                f"Plane synced ({self.project_label(active)}): "
                f"{len(modules)} modules, {len(work_items)} work items"
            )
        return self._context.store.get_project_data(active)

    @staticmethod
    def _work_item_payload(item: dict[str, Any], creating: bool) -> dict[str, Any]:
        module_id = extract_id(item.get("module"))
        if module_id is None:
            module_id = extract_id(item.get("module_id"))
        state_id = extract_id(item.get("state"))
        if state_id is None:
            state_id = extract_id(item.get("state_id"))
        resolved = {**item, "module": module_id, "state": state_id}

        if creating:
            payload = {key: resolved.get(key) for key in WORK_ITEM_CREATE_FIELDS}
            payload.update(
                {key: resolved[key] for key in WORK_ITEM_OPTIONAL_FIELDS if key in resolved}
            )
            return payload

        # Updates only carry what the caller supplied.
        supplied = set(item)
        if "module_id" in supplied:
            supplied.add("module")
        if "state_id" in supplied:
            supplied.add("state")
        return {
            key: resolved.get(key)
            for key in (*WORK_ITEM_CREATE_FIELDS, *WORK_ITEM_OPTIONAL_FIELDS)
            if key in supplied
        }

    async def upsert_work_item(
        self,
        item: dict[str, Any],
        existing_id: str | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Create or update a work item remotely, then merge it into the cache."""
        if not item.get("name") and not existing_id:
            raise ValueError("work item name is required")
        self._require_connection()
        active = self._resolve_project(project_id or item.get("project_id"))

        payload = self._work_item_payload(item, creating=existing_id is None)
        if existing_id:
            saved = await self._client.update_work_item(existing_id, payload, active)
        else:
            saved = await self._client.create_work_item(payload, active)

        normalized = normalize_work_item(saved)
        checkpoint = self._context.store.checkpoint()
        self._context.store.upsert_into(active, "work_items", normalized)
        await self._commit(checkpoint)
        return normalized

    async def upsert_module(
        self,
        module: dict[str, Any],
        existing_id: str | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Create or update a module remotely, then merge it into the cache."""
        if not module.get("name") and not existing_id:
            raise ValueError("module name is required")
        self._require_connection()
        active = self._resolve_project(project_id)

        if existing_id:
            payload = {key: module[key] for key in MODULE_WRITABLE_FIELDS if key in module}
            saved = await self._client.update_module(existing_id, payload, active)
        else:
            payload = {key: module.get(key) for key in MODULE_WRITABLE_FIELDS}
            saved = await self._client.create_module(payload, active)

        checkpoint = self._context.store.checkpoint()
        self._context.store.upsert_into(active, "modules", saved)
        await self._commit(checkpoint)
        return saved

    async def push_description(
        self,
        work_item_id: str,
        name: str,
        description_html: str,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Overwrite a work item's name and description from external text."""
        self._require_connection()
        active = self._resolve_project(project_id)
        saved = await self._client.update_work_item(
            work_item_id,
            {"name": name, "description_html": description_html},
            active,
        )
        normalized = normalize_work_item(saved)
        checkpoint = self._context.store.checkpoint()
        self._context.store.upsert_into(
            saved.get("project_id") or active, "work_items", normalized
        )
        await self._commit(checkpoint)
        self._notifier.notify("Plane work item updated from note")
        return normalized

    async def create_work_item_from_text(
        self, title: str, body: str | None = None
    ) -> dict[str, Any]:
        saved = await self.upsert_work_item({
            "name": title or "Untitled",
            "description_html": f"<p>{body}</p>" if body else None,
            "module": self._context.settings.default_module_id or None,
        })
        self._notifier.notify(f"Created Plane work item {saved.get('name')}")
        return saved

    async def refresh_projects_list(self) -> list[dict[str, Any]]:
        """Reload the project directory; keeps the previous list when offline."""
        try:
            self.available_projects = await self._client.list_projects()
        except (PlaneApiError, PlaneConfigError) as exc:
            logger.warning("Could not refresh Plane project list: %s", exc)
            return self.available_projects

        store = self._context.store
        checkpoint = store.checkpoint()
        if not store.selected_project_id:
            fallback = self._context.settings.default_project_id or next(
                (p.get("id") for p in self.available_projects if p.get("id")), None
            )
            store.set_selected_project(fallback)
        await self._commit(checkpoint)
        return self.available_projects

    async def select_project(self, project_id: str) -> ProjectCache:
        checkpoint = self._context.store.checkpoint()
        self._context.store.set_selected_project(project_id)
        await self._commit(checkpoint)
        return await self.sync(project_id, notify=False)

    async def ensure_project_loaded(self, project_id: str) -> ProjectCache:
        data = self._context.store.get_project_data(project_id)
        if not self._context.store.has_project(project_id) or not data.work_items:
            return await self.sync(project_id, notify=False)
        return data

    async def test_connection(self) -> bool:
        try:
            return await self._client.ping()
        except (PlaneApiError, PlaneConfigError) as exc:
            self._notifier.notify(f"Plane connection failed: {exc}", error=True)
            return False

    def project_label(self, project_id: str) -> str:
        for project in self.available_projects:
            if project.get("id") == project_id:
                name = project.get("name") or project_id
                identifier = project.get("identifier")
                return f"{name} ({identifier})" if identifier else name
        return project_id
