from __future__ import annotations

import asyncio

import httpx

from conftest import FakePlane, MemoryStorage
from plane_mirror import server
from plane_mirror.plane_client import PlaneClient

SETTINGS = {
    "api_base_url": "https://plane.test",
    "api_key": "secret-key",
    "workspace_slug": "acme",
}


def _init(plane: FakePlane, cache: dict | None = None) -> None:
    storage = MemoryStorage({"settings": SETTINGS, "cache": cache or {}})
    client = PlaneClient(lambda: server._context.settings, http_client=plane.http_client())
    asyncio.run(server.init_services(storage=storage, client=client))


def test_module_alias_runs_main():
    from plane_mirror import main

    assert main is server.main


def test_get_project_data_reads_cache_without_requests(plane: FakePlane):
    _init(
        plane,
        {
            "projects": {"P1": {"modules": [{"id": "m1"}], "workItems": [], "states": []}},
            "selectedProjectId": "P1",
        },
    )

    data = asyncio.run(server.get_project_data())

    assert data == {"modules": [{"id": "m1"}], "workItems": [], "states": []}
    assert asyncio.run(server.get_project_data("unknown")) == {
        "modules": [],
        "workItems": [],
        "states": [],
    }
    assert plane.requests == []


def test_sync_project_failure_is_returned_as_operation(plane: FakePlane):
    plane.route("GET", "projects/P1/modules/", httpx.Response(500, text="boom"))
    plane.route("GET", "projects/P1/states/", [])
    _init(plane)

    result = asyncio.run(server.sync_project("P1"))

    assert result["name"] == "sync"
    assert result["phase"] == "failure"
    assert result["errorCode"] == "http_error"
    health = asyncio.run(server.get_sync_health())
    assert health["operations"]["sync"]["phase"] == "failure"
    assert health["cache"]["projects"] == {}


def test_upsert_work_item_tool_returns_saved_record(plane: FakePlane):
    plane.route("POST", "projects/P1/work-items/", {"id": "w1", "name": "Task", "state": "s1"})
    _init(plane)

    result = asyncio.run(server.upsert_work_item("Task", project_id="P1"))

    assert result["phase"] == "success"
    assert result["result"]["id"] == "w1"
    assert result["result"]["state_id"] == "s1"
    cached = asyncio.run(server.get_project_data("P1"))
    assert [w["id"] for w in cached["workItems"]] == ["w1"]
