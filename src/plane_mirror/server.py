"""
MCP server exposing the Plane mirror: sync, cached reads and upserts.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from .context import MirrorContext
from .notifications import LogNotifier
from .operations import OperationTracker
from .plane_client import PlaneClient
from .storage import JsonFileStorage
from .sync import PlaneSync

logger = logging.getLogger(__name__)

_context: MirrorContext | None = None
_client: PlaneClient | None = None
_sync: PlaneSync | None = None
_notifier = LogNotifier()
_operations = OperationTracker()


async def init_services(
    storage: Any | None = None,
    client: PlaneClient | None = None,
) -> PlaneSync:
    """Load the mirror context and wire the sync engine around it."""
    global _context, _client, _sync
    _context = await MirrorContext.load(storage or JsonFileStorage())
    context = _context
    _client = client or PlaneClient(lambda: context.settings)
    _sync = PlaneSync(_context, _client, _notifier)
    _context.store.subscribe(lambda: logger.debug("Plane cache updated"))
    return _sync


def get_sync() -> PlaneSync:
    if _sync is None:
        raise RuntimeError("Plane mirror services are not initialized")
    return _sync


async def _shutdown() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Restore the cache, refresh the project list and sync on start if enabled."""
    try:
        sync = await init_services()
        await sync.refresh_projects_list()
        if sync.context.settings.sync_on_load:
            await _operations.run("sync", sync.sync(notify=False))
        yield
    finally:
        await _shutdown()


mcp = FastMCP(
    "Plane Mirror",
    instructions=(
        "Plane workspace mirror. "
        "Reads are served from the local project cache; call sync_project to "
        "rebuild it from Plane. Create/update tools write to Plane first and "
        "then merge the saved record into the cache."
    ),
    lifespan=_lifespan,
)


async def _sync_dict(project_id: str | None, notify: bool) -> dict[str, Any]:
    return (await get_sync().sync(project_id, notify=notify)).to_dict()


@mcp.tool()
async def list_projects() -> list[dict[str, Any]]:
    """List projects in the configured workspace.

    Returns:
        List of project dicts, each with {id, name, identifier}.
    """
    return await get_sync().refresh_projects_list()


@mcp.tool()
async def select_project(project_id: str) -> dict[str, Any]:
    """Make a project the current one and sync it."""

    async def _select() -> dict[str, Any]:
        return (await get_sync().select_project(project_id)).to_dict()

    return (await _operations.run("sync", _select())).to_dict()


@mcp.tool()
async def sync_project(project_id: str | None = None, notify: bool = True) -> dict[str, Any]:
    """Rebuild the cached modules, states and work items of a project.

    Args:
        project_id: Project to sync. Defaults to the selected project.
        notify: Record a summary notification on success.

    Returns:
        Operation dict with {name, phase, startedAt, finishedAt, result, error,
        errorCode}; result is the refreshed project cache.
    """
    return (await _operations.run("sync", _sync_dict(project_id, notify))).to_dict()


@mcp.tool()
async def get_project_data(project_id: str | None = None) -> dict[str, Any]:
    """Return the cached project picture without calling Plane.

    Returns:
        dict with {modules, workItems, states, lastSync}; empty lists when the
        project has never been synced.
    """
    return get_sync().context.store.get_project_data(project_id).to_dict()


@mcp.tool()
async def upsert_work_item(
    name: str,
    existing_id: str | None = None,
    project_id: str | None = None,
    description_html: str | None = None,
    state: str | None = None,
    priority: str | None = None,
    module: str | None = None,
) -> dict[str, Any]:
    """Create a work item, or update it when existing_id is given.

    Returns:
        Operation dict; result is the saved, normalized work item.
    """
    item: dict[str, Any] = {"name": name}
    for key, value in (
        ("description_html", description_html),
        ("state", state),
        ("priority", priority),
        ("module", module),
    ):
        if value is not None or existing_id is None:
            item[key] = value
    return (
        await _operations.run(
            "upsert_work_item",
            get_sync().upsert_work_item(item, existing_id, project_id),
        )
    ).to_dict()


@mcp.tool()
async def upsert_module(
    name: str,
    existing_id: str | None = None,
    project_id: str | None = None,
    description: str | None = None,
    status: str | None = None,
    start_date: str | None = None,
    target_date: str | None = None,
) -> dict[str, Any]:
    """Create a module, or update it when existing_id is given.

    Returns:
        Operation dict; result is the saved module.
    """
    module: dict[str, Any] = {"name": name}
    for key, value in (
        ("description", description),
        ("status", status),
        ("start_date", start_date),
        ("target_date", target_date),
    ):
        if value is not None or existing_id is None:
            module[key] = value
    return (
        await _operations.run(
            "upsert_module",
            get_sync().upsert_module(module, existing_id, project_id),
        )
    ).to_dict()


@mcp.tool()
async def push_description(
    work_item_id: str,
    name: str,
    description_html: str,
    project_id: str | None = None,
) -> dict[str, Any]:
    """Replace a work item's name and description with the given text."""
    return (
        await _operations.run(
            "push_description",
            get_sync().push_description(work_item_id, name, description_html, project_id),
        )
    ).to_dict()


@mcp.tool()
async def create_work_item_from_text(title: str, body: str | None = None) -> dict[str, Any]:
    """Create a work item in the default module from a title and optional body."""
    return (
        await _operations.run(
            "upsert_work_item",
            get_sync().create_work_item_from_text(title, body),
        )
    ).to_dict()


@mcp.tool()
async def test_connection() -> dict[str, Any]:
    """Check credentials and workspace access."""
    sync = get_sync()
    ok = await sync.test_connection()
    return {"ok": ok, "plane": _client.get_health() if _client else None}


@mcp.tool()
async def get_sync_health() -> dict[str, Any]:
    """Return Plane client health, cache summary and latest operations."""
    sync = get_sync()
    return {
        "plane": _client.get_health() if _client else None,
        "cache": sync.context.store.summary(),
        "operations": _operations.snapshot(),
    }


@mcp.tool()
async def recent_notifications() -> list[dict[str, Any]]:
    """Return recent user-facing sync and write notifications, oldest first."""
    return _notifier.recent()


def main() -> None:
    mcp.run()
