"""Plane workspace mirror: sync engine and MCP server."""

from .server import main

__all__ = ["main"]
