"""
Identifier and record normalization for Plane API payloads.

Plane returns relations either as bare ids or as embedded objects depending on
the endpoint and the `expand` query. Everything stored in the local cache goes
through these helpers so readers only ever see bare string ids.
"""

from __future__ import annotations

from typing import Any


def extract_id(value: Any) -> str | None:
    """Return the canonical id for a relation field, or None."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        embedded = value.get("id")
        if isinstance(embedded, str):
            return embedded
    return None


def normalize_work_item(item: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve `module`, `state` and `state_id` to bare ids.

    The embedded/raw `module` field wins over `module_id`, and `state` wins
    over `state_id`. Both state fields always carry the same value afterwards.
    """
    module_id = extract_id(item.get("module"))
    if module_id is None:
        module_id = extract_id(item.get("module_id"))

    state_id = extract_id(item.get("state"))
    if state_id is None:
        state_id = extract_id(item.get("state_id"))

    return {
        **item,
        "module": module_id,
        "state": state_id,
        "state_id": state_id,
    }
