"""
Async client for the Plane REST API.

Wraps a long-lived `httpx.AsyncClient`, scopes every path under the workspace
slug, authenticates with the per-request `x-api-key` header and drives cursor
pagination for list endpoints. Failures are surfaced as `PlaneApiError`; the
client never retries on its own.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from typing import Any

import httpx

from .settings import PlaneConfigError, PlaneSettings

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
ERROR_BODY_LIMIT = 200
HTTP_TIMEOUT_SECONDS = float(os.getenv("PLANE_HTTP_TIMEOUT_SECONDS", "30"))
WORK_ITEM_EXPAND = "state,module,module_id"


class PlaneApiError(RuntimeError):
    """Raised when a Plane API call fails at the transport or HTTP level."""

    def __init__(self, code: str, message: str, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


class PlaneClient:
    """Thin async wrapper over the Plane workspace API."""

    def __init__(
        self,
        settings_provider: Callable[[], PlaneSettings],
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ):
        self._get_settings = settings_provider
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout_seconds = timeout_seconds or HTTP_TIMEOUT_SECONDS

        self._request_count = 0
        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None
        self._last_success_at: float | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _project_path(self, project_id: str | None, suffix: str) -> str:
        active = project_id or self._get_settings().default_project_id
        if not active:
            raise PlaneConfigError("No project selected")
        return f"projects/{active}/{suffix}"

    @staticmethod
    def build_url(settings: PlaneSettings, path: str) -> str:
        base = settings.api_base_url.rstrip("/")
        return f"{base}/api/v1/workspaces/{settings.workspace_slug}/{path}"

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("Plane API returned a non-JSON body for %s", response.request.url)
            return None

    def _record_failure(self, message: str) -> None:
        self._failure_count += 1
        self._last_failure_at = time.time()
        self._last_error = message
        logger.warning("Plane API call failed: %s", message)

    def _record_success(self) -> None:
        self._failure_count = 0
        self._last_error = None
        self._last_success_at = time.time()

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
    ) -> Any:
        settings = self._get_settings()
        settings.require_complete()

        url = self.build_url(settings, path)
        headers = {
            "Content-Type": "application/json",
            "x-api-key": settings.api_key,
        }
        params = {key: str(value) for key, value in (query or {}).items() if value}

        self._request_count += 1
        try:
            response = await self._client().request(
                method,
                url,
                headers=headers,
                params=params or None,
                json=body,
            )
        except httpx.HTTPError as exc:
            message = f"Plane API {method} {url} failed: {exc.__class__.__name__}: {exc}"
            self._record_failure(message)
            raise PlaneApiError("transport_error", message) from exc

        if 200 <= response.status_code < 300:
            self._record_success()
            return self._decode_json(response)

        message = f"Plane API {method} {url} failed ({response.status_code})"
        if response.text:
            message += f": {response.text[:ERROR_BODY_LIMIT]}"
        self._record_failure(message)
        raise PlaneApiError("http_error", message, status=response.status_code)

    async def fetch_all_pages(
        self, path: str, query: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        Collect every record of a list endpoint, following opaque cursors.

        A bare list response is the only page. An envelope is followed while it
        carries both `next_cursor` and a truthy `next_page_results`. Any other
        shape ends the walk with what has been collected so far.
        """
        results: list[dict[str, Any]] = []
        cursor: str | None = None

        while True:
            page_query: dict[str, Any] = {"per_page": PAGE_SIZE, **(query or {})}
            if cursor:
                page_query["cursor"] = cursor

            response = await self.request(path, query=page_query)
            if isinstance(response, list):
                results.extend(response)
                break
            if isinstance(response, dict) and isinstance(response.get("results"), list):
                results.extend(response["results"])
                next_cursor = response.get("next_cursor")
                if not (next_cursor and response.get("next_page_results")):
                    break
                cursor = next_cursor
                logger.debug("Fetching next page of %s (%d records so far)", path, len(results))
            else:
                break

        return results

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self.fetch_all_pages("projects/")

    async def list_modules(self, project_id: str | None = None) -> list[dict[str, Any]]:
        return await self.fetch_all_pages(self._project_path(project_id, "modules/"))

    async def list_states(self, project_id: str | None = None) -> list[dict[str, Any]]:
        return await self.fetch_all_pages(self._project_path(project_id, "states/"))

    async def list_work_items(
        self, project_id: str | None = None, module_id: str | None = None
    ) -> list[dict[str, Any]]:
        query = {"expand": WORK_ITEM_EXPAND}
        if module_id:
            query["module"] = module_id
        return await self.fetch_all_pages(self._project_path(project_id, "work-items/"), query)

    async def create_work_item(
        self, payload: dict[str, Any], project_id: str | None = None
    ) -> dict[str, Any]:
        return await self.request(
            self._project_path(project_id, "work-items/"), method="POST", body=payload
        )

    async def update_work_item(
        self, work_item_id: str, payload: dict[str, Any], project_id: str | None = None
    ) -> dict[str, Any]:
        return await self.request(
            self._project_path(project_id, f"work-items/{work_item_id}/"),
            method="PATCH",
            body=payload,
        )

    async def create_module(
        self, payload: dict[str, Any], project_id: str | None = None
    ) -> dict[str, Any]:
        return await self.request(
            self._project_path(project_id, "modules/"), method="POST", body=payload
        )

    async def update_module(
        self, module_id: str, payload: dict[str, Any], project_id: str | None = None
    ) -> dict[str, Any]:
        return await self.request(
            self._project_path(project_id, f"modules/{module_id}/"),
            method="PATCH",
            body=payload,
        )

    async def ping(self) -> bool:
        await self.request("projects/")
        return True

    def get_health(self) -> dict[str, Any]:
        settings = self._get_settings()
        return {
            "apiBaseUrl": settings.api_base_url,
            "workspaceSlug": settings.workspace_slug,
            "configured": not settings.missing_fields(),
            "requestCount": self._request_count,
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
            "lastSuccessAt": self._last_success_at,
        }
