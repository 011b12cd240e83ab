"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..backup.models import WebDavConfig
from ..backup.service import BackupService
from ..backup.stores import AppDirectories, JsonChatStore, JsonSettingsStore
from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import build_config, yaml_fallbacks
from ..core.errors import BackupError
from ..core.webdav import WebDavClient

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"
CHATS_FILE = "chats.json"
EXPORTS_DIR = "exports"


@dataclass
class ServerContext:
    """Everything a tool handler needs.

    Attributes:
        config: Resolved runtime configuration.
        service: Backup service wired to the local stores.
        export_dir: Default destination for ``backup_export``.
    """

    config: Config
    service: BackupService
    export_dir: Path

    @property
    def webdav(self) -> WebDavConfig:
        return self.config.webdav()


def build_context(config: Config, temp_dir: str | None = None) -> ServerContext:
    """Wire the JSON stores and WebDAV client under ``config.data_root``."""
    root = config.data_root
    root.mkdir(parents=True, exist_ok=True)
    service = BackupService(
        settings=JsonSettingsStore(root / SETTINGS_FILE),
        chats=JsonChatStore(root / CHATS_FILE),
        directories=AppDirectories.under(root),
        client=WebDavClient(insecure=config.insecure),
        temp_root=Path(temp_dir).expanduser() if temp_dir else None,
    )
    return ServerContext(
        config=config, service=service, export_dir=root / EXPORTS_DIR
    )


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Open the local stores and probe the WebDAV collection

    An unreachable WebDAV server is logged but not fatal: local export and
    import keep working, and remote tools report the failure per call.

    Args:
        config_overrides: Optional dict with config values from CLI (url,
            username, password, path, data_dir, insecure, debug)

    Yields:
        Dict with 'context' key containing the ``ServerContext``

    Raises:
        RuntimeError: If configuration is invalid or the data directory
            cannot be opened.
    """
    logger.info("MCP server starting...")
    _stderr_print("Kelivo Sync MCP Server starting...")

    temp_dir = None
    try:
        load_dotenv()

        fallbacks: dict[str, Any] | None = None
        sources = []
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            fallbacks = yaml_fallbacks(unified)
            temp_dir = unified.storage.temp_dir
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            username=overrides.get("username"),
            password=overrides.get("password"),
            path=overrides.get("path"),
            data_dir=overrides.get("data_dir"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure KELIVO_WEBDAV_URL is set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure KELIVO_WEBDAV_URL is set."
        ) from e

    try:
        ctx = build_context(config, temp_dir)
    except (OSError, ValueError) as e:
        logger.error("Cannot open data directory %s: %s", config.data_dir, e)
        _stderr_print(f"ERROR: Cannot open data directory {config.data_dir}: {e}")
        raise RuntimeError(f"Cannot open data directory: {e}") from e
    _stderr_print(f"  Data directory: {config.data_root}")

    cfg = ctx.webdav
    logger.info("WebDAV collection: %s", cfg.collection_url)
    _stderr_print(f"  WebDAV collection: {cfg.collection_url}")
    try:
        await ctx.service.test_webdav(cfg)
        _stderr_print("  WebDAV connection OK")
    except (BackupError, OSError) as e:
        logger.warning("WebDAV probe failed: %s", e)
        _stderr_print(f"  WARNING: WebDAV probe failed: {e}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"context": ctx}

    logger.info("MCP server shutting down")
    _stderr_print("Kelivo Sync MCP Server shutting down.")
