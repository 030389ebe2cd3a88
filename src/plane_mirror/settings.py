"""
Connection and behaviour settings for the Plane mirror.

Each field resolves from its environment variable first, then from the value
persisted alongside the cache, then from the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

DEFAULT_API_BASE_URL = "https://api.plane.so"

ENV_VARS = {
    "api_base_url": "PLANE_API_BASE_URL",
    "api_key": "PLANE_API_KEY",
    "workspace_slug": "PLANE_WORKSPACE_SLUG",
    "default_project_id": "PLANE_DEFAULT_PROJECT_ID",
    "default_module_id": "PLANE_DEFAULT_MODULE_ID",
    "sync_on_load": "PLANE_SYNC_ON_LOAD",
    "dedupe_work_items": "PLANE_DEDUPE_WORK_ITEMS",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


class PlaneConfigError(RuntimeError):
    """Raised before any network call when settings are unusable."""


@dataclass
class PlaneSettings:
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str = ""
    workspace_slug: str = ""
    default_project_id: str = ""
    default_module_id: str = ""
    sync_on_load: bool = True
    dedupe_work_items: bool = False
    # Names of fields whose value came from an environment variable.
    env_sourced: frozenset[str] = field(default=frozenset(), compare=False, repr=False)

    @classmethod
    def resolve(cls, persisted: dict[str, Any] | None = None) -> PlaneSettings:
        """Build settings from env vars, persisted values and defaults."""
        persisted = persisted if isinstance(persisted, dict) else {}
        values: dict[str, Any] = {}
        from_env: set[str] = set()
        for name, env_var in ENV_VARS.items():
            raw_env = os.getenv(env_var)
            if raw_env is not None:
                values[name] = cls._coerce(name, raw_env)
                from_env.add(name)
            elif name in persisted:
                values[name] = cls._coerce(name, persisted[name])

        settings = cls(**values, env_sourced=frozenset(from_env))
        settings.api_base_url = settings.api_base_url.strip() or DEFAULT_API_BASE_URL
        return settings

    @staticmethod
    def _coerce(name: str, value: Any) -> Any:
        if name in {"sync_on_load", "dedupe_work_items"}:
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in _TRUE_VALUES
        if value is None:
            return ""
        return str(value).strip()

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.api_key:
            missing.append("api_key")
        if not self.workspace_slug:
            missing.append("workspace_slug")
        if not self.api_base_url:
            missing.append("api_base_url")
        return missing

    def require_complete(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise PlaneConfigError(f"Plane settings are incomplete: missing {', '.join(missing)}")

    def to_dict(self) -> dict[str, Any]:
        """Persistable values; anything supplied by the environment is left out."""
        return {
            name: getattr(self, name) for name in ENV_VARS if name not in self.env_sourced
        }
