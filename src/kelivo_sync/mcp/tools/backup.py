"""MCP tool handlers for WebDAV backup and restore.

Defines seven tools:

- ``webdav_test`` -- probe the configured collection.
- ``backup_upload`` -- snapshot local state and upload it.
- ``backup_list`` -- list remote archives, newest first.
- ``backup_restore`` -- restore a remote archive by name.
- ``backup_delete`` -- delete a remote archive by name.
- ``backup_export`` -- write an archive to a local directory.
- ``backup_import`` -- restore a local archive file.

Restore tools accept one action per category (``settings``, ``providers``,
``chats``, ``files``: ignore / merge / overwrite) or a legacy ``mode``.
Unspecified categories default to merge.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...backup.models import (
    BackupFileItem,
    RestoreAction,
    RestoreMode,
    RestoreOptions,
)
from ...backup.reporter import (
    backup_item_to_json,
    format_backup_list,
    format_restore_report,
    report_to_json,
)
from .errors import build_error_response
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import ServerContext

logger = logging.getLogger(__name__)

# Tool argument -> RestoreOptions field
_ACTION_ARGS: dict[str, str] = {
    "settings": "settings_action",
    "providers": "providers_action",
    "chats": "chats_action",
    "files": "files_action",
}

_ACTION_SCHEMA = {
    "type": "string",
    "enum": [a.value for a in RestoreAction],
}

_RESTORE_PROPERTIES: dict[str, Any] = {
    "settings": {
        **_ACTION_SCHEMA,
        "description": "Action for general settings",
    },
    "providers": {
        **_ACTION_SCHEMA,
        "description": "Action for providers, assistants, tags and search services",
    },
    "chats": {
        **_ACTION_SCHEMA,
        "description": "Action for conversations and messages",
    },
    "files": {
        **_ACTION_SCHEMA,
        "description": "Action for uploaded files, images and avatars",
    },
    "mode": {
        "type": "string",
        "enum": [m.value for m in RestoreMode],
        "description": (
            "Legacy mode applied to all categories; ignored when any "
            "per-category action is given"
        ),
    },
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


BACKUP_TOOLS: list[types.Tool] = [
    types.Tool(
        name="webdav_test",
        description="Test the WebDAV connection and credentials against the backup collection.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="backup_upload",
        description=(
            "Snapshot local settings, chats and files into a zip archive and "
            "upload it to the WebDAV backup collection."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="backup_list",
        description="List backup archives in the WebDAV collection, newest first.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="backup_restore",
        description=(
            "Download a backup archive by name and restore it. Each category "
            "can be ignored, merged into local data, or overwrite it."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Archive name as shown by backup_list",
                },
                **_RESTORE_PROPERTIES,
            },
            "required": ["name"],
        },
    ),
    types.Tool(
        name="backup_delete",
        description="Delete a backup archive from the WebDAV collection.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Archive name as shown by backup_list",
                },
            },
            "required": ["name"],
        },
    ),
    types.Tool(
        name="backup_export",
        description="Write a backup archive of local data to a local directory.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "dest_dir": {
                    "type": "string",
                    "description": (
                        "Destination directory (absolute path). Defaults to "
                        "<data_dir>/exports."
                    ),
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="backup_import",
        description="Restore a backup archive from the local filesystem.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path of the archive file",
                },
                **_RESTORE_PROPERTIES,
            },
            "required": ["path"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def restore_options_from_args(args: dict[str, Any]) -> RestoreOptions:
    """Build ``RestoreOptions`` from tool arguments.

    Raises:
        ValueError: If an action or mode value is not recognised.
    """
    actions = {
        field: RestoreAction(args[arg])
        for arg, field in _ACTION_ARGS.items()
        if args.get(arg)
    }
    if actions:
        return RestoreOptions(**actions)
    if args.get("mode"):
        return RestoreOptions.from_mode(RestoreMode(args["mode"]))
    return RestoreOptions()


def _require(args: dict[str, Any], key: str) -> str:
    value = str(args.get(key) or "").strip()
    if not value:
        raise ValueError(f"{key} is required")
    return value


async def _find_backup(
    ctx: ServerContext, name: str
) -> BackupFileItem | None:
    for item in await ctx.service.list_backups(ctx.webdav):
        if item.display_name == name:
            return item
    return None


def _not_found(name: str) -> types.CallToolResult:
    return build_error_response(
        "not_found",
        f"Backup '{name}' not found.",
        "Use backup_list to see available backups.",
    )


def _text_result(text: str, structured: dict) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_webdav_test(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    cfg = ctx.webdav
    await ctx.service.test_webdav(cfg)
    return _text_result(
        f"WebDAV connection OK: {cfg.collection_url}",
        {"ok": True, "collection_url": cfg.collection_url},
    )


async def _handle_backup_upload(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    item = await ctx.service.backup_to_webdav(ctx.webdav)
    return _text_result(
        f"Uploaded backup {item.display_name} ({item.size} bytes)",
        backup_item_to_json(item),
    )


async def _handle_backup_list(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    items = await ctx.service.list_backups(ctx.webdav)
    return _text_result(
        format_backup_list(items),
        {"backups": [backup_item_to_json(i) for i in items]},
    )


async def _handle_backup_restore(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    name = _require(args, "name")
    options = restore_options_from_args(args)
    item = await _find_backup(ctx, name)
    if item is None:
        return _not_found(name)

    report = await ctx.service.restore_from_webdav(
        ctx.webdav, item, options=options
    )
    logger.info("Restored %s: %d failed categories", name, len(report.errors))
    return _text_result(format_restore_report(report), report_to_json(report))


async def _handle_backup_delete(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    name = _require(args, "name")
    item = await _find_backup(ctx, name)
    if item is None:
        return _not_found(name)

    await ctx.service.delete_backup(ctx.webdav, item)
    return _text_result(
        f"Deleted backup {name}", {"deleted": name, "href": item.href}
    )


async def _handle_backup_export(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    dest = args.get("dest_dir")
    dest_dir = Path(dest).expanduser() if dest else ctx.export_dir
    path = await ctx.service.export_to_file(ctx.webdav, dest_dir)
    return _text_result(
        f"Exported backup to {path}",
        {"path": str(path), "size": path.stat().st_size},
    )


async def _handle_backup_import(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    path = Path(_require(args, "path")).expanduser()
    options = restore_options_from_args(args)
    report = await ctx.service.restore_from_local_file(
        path, ctx.webdav, options=options
    )
    return _text_result(format_restore_report(report), report_to_json(report))


# ToolSpec list for registry-based dispatch
BACKUP_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=BACKUP_TOOLS[0],
        permissions=frozenset({"BACKUP_VIEW"}),
        handler=_handle_webdav_test,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[1],
        permissions=frozenset({"BACKUP_CREATE"}),
        handler=_handle_backup_upload,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[2],
        permissions=frozenset({"BACKUP_VIEW"}),
        handler=_handle_backup_list,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[3],
        permissions=frozenset({"BACKUP_VIEW", "BACKUP_RESTORE"}),
        handler=_handle_backup_restore,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[4],
        permissions=frozenset({"BACKUP_VIEW", "BACKUP_DELETE"}),
        handler=_handle_backup_delete,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[5],
        permissions=frozenset({"BACKUP_CREATE"}),
        handler=_handle_backup_export,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[6],
        permissions=frozenset({"BACKUP_RESTORE"}),
        handler=_handle_backup_import,
    ),
]
