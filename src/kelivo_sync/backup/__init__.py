"""Backup snapshot and granular restore engine.

Captures a device's settings, chats and user files into one zip archive and
applies such an archive back onto live local state, either as a full
overwrite or category by category (ignore / merge / overwrite).

Modules:

- ``models``    -- ``WebDavConfig``, ``RestoreOptions``, ``BackupFileItem``,
  ``RestoreReport`` and the enums they use.
- ``archive``   -- ``pack`` / ``unpack`` with path-traversal hardening.
- ``stores``    -- Collaborator protocols plus JSON-backed implementations.
- ``snapshot``  -- ``SnapshotBuilder``: local state to archive members.
- ``mergers``   -- Per-key settings merge strategies.
- ``planner``   -- ``RestorePlanner``: applies an unpacked archive.
- ``reporter``  -- Human-readable and JSON restore reports.
- ``service``   -- ``BackupService``: async top-level operations.  Import it
  from ``kelivo_sync.backup.service``; it depends on the WebDAV client in
  ``kelivo_sync.core``, which itself depends on ``models``.

Usage example
-------------
::

    from pathlib import Path
    from kelivo_sync.backup import (
        AppDirectories, JsonChatStore, JsonSettingsStore,
        RestoreAction, RestoreOptions, WebDavConfig, format_restore_report,
    )
    from kelivo_sync.backup.service import BackupService

    root = Path("~/.kelivo").expanduser()
    service = BackupService(
        settings=JsonSettingsStore(root / "settings.json"),
        chats=JsonChatStore(root / "chats.json"),
        directories=AppDirectories.under(root),
    )
    cfg = WebDavConfig(url="https://dav.example.com", username="me",
                       password="secret")

    await service.backup_to_webdav(cfg)
    latest = (await service.list_backups(cfg))[0]
    report = await service.restore_from_webdav(
        cfg, latest,
        options=RestoreOptions(files_action=RestoreAction.IGNORE),
    )
    print(format_restore_report(report))
"""

# models must load first: kelivo_sync.core.webdav imports it.
from .models import (
    BackupFileItem,
    Category,
    CategoryResult,
    RestoreAction,
    RestoreMode,
    RestoreOptions,
    RestoreReport,
    WebDavConfig,
)
from .archive import pack, unpack
from .mergers import merge_setting
from .planner import RestorePlanner
from .reporter import (
    format_backup_list,
    format_restore_report,
    report_to_json,
)
from .snapshot import SnapshotBuilder, backup_file_name
from .stores import (
    AppDirectories,
    ChatMessage,
    Conversation,
    JsonChatStore,
    JsonSettingsStore,
)

__all__ = [
    "AppDirectories",
    "BackupFileItem",
    "Category",
    "CategoryResult",
    "ChatMessage",
    "Conversation",
    "JsonChatStore",
    "JsonSettingsStore",
    "RestoreAction",
    "RestoreMode",
    "RestoreOptions",
    "RestorePlanner",
    "RestoreReport",
    "SnapshotBuilder",
    "WebDavConfig",
    "backup_file_name",
    "format_backup_list",
    "format_restore_report",
    "merge_setting",
    "pack",
    "report_to_json",
    "unpack",
]
