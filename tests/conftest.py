from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from plane_mirror.context import MirrorContext
from plane_mirror.plane_client import PlaneClient
from plane_mirror.settings import ENV_VARS, PlaneSettings

BASE = "/api/v1/workspaces/acme"

Route = Any


class FakePlane:
    """In-memory Plane API served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Route] = {}

    def route(self, method: str, path: str, response: Route) -> None:
        self.routes[(method, f"{BASE}/{path}")] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def paths(self, method: str = "GET") -> list[str]:
        return [r.url.path for r in self.requests if r.method == method]


class MemoryStorage:
    def __init__(self, blob: dict[str, Any] | None = None, fail_saves: bool = False):
        self.blob = blob
        self.saves: list[dict[str, Any]] = []
        self.fail_saves = fail_saves

    async def load(self) -> dict[str, Any] | None:
        return self.blob

    async def save(self, blob: dict[str, Any]) -> None:
        if self.fail_saves:
            raise OSError("disk full")
        self.saves.append(blob)
        self.blob = blob


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, bool]] = []

    def notify(self, message: str, *, error: bool = False) -> None:
        self.messages.append((message, error))


def make_settings(**overrides: Any) -> PlaneSettings:
    values = {
        "api_base_url": "https://plane.test",
        "api_key": "secret-key",
        "workspace_slug": "acme",
    }
    values.update(overrides)
    return PlaneSettings(**values)


def make_client(plane: FakePlane, settings_provider: Callable[[], PlaneSettings]) -> PlaneClient:
    return PlaneClient(settings_provider, http_client=plane.http_client())


@pytest.fixture(autouse=True)
def _clear_plane_env(monkeypatch: pytest.MonkeyPatch):
    for key in ENV_VARS.values():
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def plane() -> FakePlane:
    return FakePlane()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def context(storage: MemoryStorage) -> MirrorContext:
    return MirrorContext(storage, settings=make_settings())
