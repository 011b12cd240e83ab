"""MCP tool handlers for backup operations.

This package wraps ``BackupService`` with async handlers, report
formatting, and structured error responses.
"""

from .backup import BACKUP_SPECS, BACKUP_TOOLS
from .errors import build_error_response, translate_backup_error
from .registry import ToolRegistry, ToolSpec, load_permissions_file

ALL_SPECS: list[ToolSpec] = list(BACKUP_SPECS)

__all__ = [
    "build_error_response",
    "translate_backup_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "BACKUP_SPECS",
    "BACKUP_TOOLS",
]
