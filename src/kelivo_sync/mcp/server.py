"""MCP server for Kelivo backup and restore using stdio transport.

This module implements the Model Context Protocol server that lets an
agent back up local chat data to WebDAV, list and delete remote archives,
and restore them category by category.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from .lifespan import ServerContext, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)

logger = logging.getLogger(__name__)

server = Server("kelivo-sync")

# Initialized in main()
_context: ServerContext | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> ServerContext:
    """Get the global ServerContext instance.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError(
            "ServerContext not initialized. Server lifespan not started."
        )
    return _context


def set_context(context: ServerContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, optionally filtered by a permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )
    registry = ToolRegistry(ALL_SPECS, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(ALL_SPECS),
    )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging is set up for MCP mode (file only, never stdout) before the
    stdio transport starts.

    Args:
        config_overrides: Optional dict with config values to override
            (url, username, password, path, data_dir, insecure, debug,
            log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    permissions_file = overrides.get("permissions_file")
    registry = build_registry(permissions_file)
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(ALL_SPECS)} tools enabled)",
            file=sys.stderr,
        )
    set_registry(registry)

    # set_context() is called here rather than inside the lifespan so that
    # running this file as __main__ updates the module the handlers read.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx["context"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="kelivo-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Kelivo Sync MCP Server - WebDAV backup and granular restore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .kelivo_sync/config.yml)
  kelivo-sync-mcp

  # Override the WebDAV endpoint
  kelivo-sync-mcp --url https://dav.example.com --username me

  # Read-only deployment
  kelivo-sync-mcp --permissions-file /etc/kelivo-sync/view-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--url",
        help="Override WebDAV URL (takes precedence over KELIVO_WEBDAV_URL and config files)",
    )
    parser.add_argument(
        "--username",
        help="Override WebDAV username (takes precedence over KELIVO_WEBDAV_USERNAME)",
    )
    parser.add_argument(
        "--password",
        help="Override WebDAV password"
        " (visible in process list -- prefer KELIVO_WEBDAV_PASSWORD env var)",
    )
    parser.add_argument(
        "--path",
        help="Remote collection path for backups (default: kelivo_backups)",
    )
    parser.add_argument(
        "--data-dir",
        help="Local data directory (default: ~/.kelivo)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE env var or /tmp/kelivo-sync.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (BACKUP_VIEW, BACKUP_CREATE, "
        "BACKUP_RESTORE, BACKUP_DELETE), # for comments.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kelivo-sync version {__version__}",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Collect the CLI values that were actually given."""
    overrides = {}
    for key in (
        "url",
        "username",
        "password",
        "path",
        "data_dir",
        "log_file",
        "permissions_file",
    ):
        value = getattr(args, key)
        if value:
            overrides[key] = value
    if args.insecure:
        overrides["insecure"] = True
    if args.debug:
        overrides["debug"] = True
    return overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()
    config_overrides = overrides_from_args(args)

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "password"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
