"""Core transport and async helpers shared by the backup engine and MCP server."""

from .async_utils import run_sync
from .webdav import WebDavClient

__all__ = ["WebDavClient", "run_sync"]
