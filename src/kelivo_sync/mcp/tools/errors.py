"""Error response builders for MCP tool handlers.

Errors are returned as structured ``CallToolResult``s carrying a
corrective action so an agent can recover without human intervention.
"""

import mcp.types as types
import requests

from ...core.errors import (
    ArchiveCorrupt,
    AuthError,
    BackupError,
    BackupNotFound,
    TransportError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, auth_failed, permission_denied,
            transport_error, archive_corrupt, connection_error,
            validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Backup 'x.zip' not found", "Use backup_list to see available backups.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


_ACTIONS: dict[str, str] = {
    "auth_failed": (
        "Check KELIVO_WEBDAV_USERNAME and KELIVO_WEBDAV_PASSWORD, "
        "then retry webdav_test."
    ),
    "not_found": "Use backup_list to see available backups.",
    "permission_denied": (
        "The WebDAV account cannot write to the backup collection. "
        "Check KELIVO_WEBDAV_PATH or the server's sharing settings."
    ),
    "transport_error": (
        "Check KELIVO_WEBDAV_URL and server availability, then retry."
    ),
    "archive_corrupt": (
        "The archive is damaged. Choose another backup from backup_list."
    ),
    "file_not_found": (
        "Check the path, or create an archive with backup_export."
    ),
    "connection_error": (
        "The WebDAV server is unreachable. Check KELIVO_WEBDAV_URL "
        "and network connectivity."
    ),
    "server_error": "Retry later or check the server log.",
}


def translate_backup_error(error: BackupError) -> types.CallToolResult:
    """Translate a backup exception into a structured error response."""
    match error:
        case AuthError():
            return build_error_response(
                "auth_failed", str(error), _ACTIONS["auth_failed"]
            )
        case TransportError(status=404):
            return build_error_response(
                "not_found", str(error), _ACTIONS["not_found"]
            )
        case TransportError(status=403):
            return build_error_response(
                "permission_denied", str(error), _ACTIONS["permission_denied"]
            )
        case TransportError():
            return build_error_response(
                "transport_error", str(error), _ACTIONS["transport_error"]
            )
        case ArchiveCorrupt():
            return build_error_response(
                "archive_corrupt", str(error), _ACTIONS["archive_corrupt"]
            )
        case BackupNotFound():
            return build_error_response(
                "not_found", str(error), _ACTIONS["file_not_found"]
            )
        case _:
            return build_error_response(
                "server_error", str(error), _ACTIONS["server_error"]
            )


def translate_request_error(
    error: requests.RequestException,
) -> types.CallToolResult:
    """Translate a network-level failure (DNS, refused, timeout, TLS)."""
    return build_error_response(
        "connection_error", str(error), _ACTIONS["connection_error"]
    )
