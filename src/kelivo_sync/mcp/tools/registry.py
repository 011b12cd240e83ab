"""ToolSpec and ToolRegistry for permission-based tool filtering.

Operators can restrict which backup tools are exposed to an agent, e.g. a
read-only deployment that may list backups but never restore or delete.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required permissions,
  and an async handler with standardized signature (context, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed permissions at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_permissions_file: Reads a simple text file of permission names.

Permissions: BACKUP_VIEW, BACKUP_CREATE, BACKUP_RESTORE, BACKUP_DELETE.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import mcp.types as types
import requests

from ...core.errors import BackupError

if TYPE_CHECKING:
    from ..lifespan import ServerContext

logger = logging.getLogger(__name__)

KNOWN_PERMISSIONS = frozenset(
    {"BACKUP_VIEW", "BACKUP_CREATE", "BACKUP_RESTORE", "BACKUP_DELETE"}
)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Permissions required to use this tool.
            Empty frozenset means the tool is always available.
        handler: Async handler with signature (context, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[ServerContext, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional permission-based filtering.

    If allowed_permissions is None, all specs are included.
    Otherwise, a spec is included only if:
    - its permissions set is empty (always available), or
    - its permissions are a subset of allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered (permitted) specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        context: ServerContext,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Backup errors, network failures, validation errors and unexpected
        exceptions are translated into structured CallToolResult responses
        with corrective actions.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import (
            build_error_response,
            translate_backup_error,
            translate_request_error,
        )

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(context, args)
        except BackupError as e:
            logger.warning("Backup error in %s: %s", name, e)
            return translate_backup_error(e)
        except requests.RequestException as e:
            logger.warning("Network error in %s: %s", name, e)
            return translate_request_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Retry later or check the server log.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load permissions from a text file.

    Format: one permission per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only deployment
        BACKUP_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains unknown permissions or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Unknown permission '{stripped}' at line {line_num} in {path}. "
                f"Expected one of: {', '.join(sorted(KNOWN_PERMISSIONS))}."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
