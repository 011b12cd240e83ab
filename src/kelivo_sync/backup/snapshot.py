"""Serialise local state into the canonical backup archive layout.

Archive members:

- ``settings.json`` -- flat settings map (local-only keys excluded).
- ``chats.json`` -- conversations, messages, tool events and thought
  signatures, with a ``version`` tag.
- ``upload/**``, ``images/**``, ``avatars/**`` -- verbatim file trees.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from .archive import ArchiveEntry, iter_tree, pack
from .models import WebDavConfig
from .stores import LOCAL_ONLY_KEYS, AppDirectories, ChatService, SettingsStore

logger = logging.getLogger(__name__)

SETTINGS_MEMBER = "settings.json"
CHATS_MEMBER = "chats.json"
CHATS_FORMAT_VERSION = 1


def backup_file_name(now: datetime | None = None) -> str:
    """Name for a new archive: ``kelivo_backup_<ISO 8601, ':' -> '-'>.zip``."""
    stamp = (now or datetime.now()).isoformat(timespec="microseconds")
    return f"kelivo_backup_{stamp.replace(':', '-')}.zip"


class SnapshotBuilder:
    """Build archive members from the live collaborators.

    Args:
        settings: Settings store to snapshot.
        chats: Chat service to enumerate.
        directories: File roots to walk.
    """

    def __init__(
        self,
        settings: SettingsStore,
        chats: ChatService,
        directories: AppDirectories,
    ) -> None:
        self.settings = settings
        self.chats = chats
        self.directories = directories

    def build_settings_blob(self) -> bytes:
        snapshot = {
            k: v
            for k, v in self.settings.snapshot().items()
            if k not in LOCAL_ONLY_KEYS
        }
        return json.dumps(snapshot, ensure_ascii=False).encode("utf-8")

    def build_chats_blob(self) -> bytes:
        """Encode every conversation and message.

        Tool events and thought signatures are attached only for
        assistant messages, and only when non-empty.
        """
        conversations = self.chats.get_all_conversations()
        messages = []
        tool_events: dict[str, list[dict]] = {}
        signatures: dict[str, str] = {}
        for conversation in conversations:
            for message in self.chats.get_messages(conversation.id):
                messages.append(message)
                if message.role != "assistant":
                    continue
                events = self.chats.get_tool_events(message.id)
                if events:
                    tool_events[message.id] = events
                signature = self.chats.get_gemini_thought_signature(
                    message.id
                )
                if signature:
                    signatures[message.id] = signature

        logger.debug(
            "Snapshot: %d conversations, %d messages",
            len(conversations),
            len(messages),
        )
        doc = {
            "version": CHATS_FORMAT_VERSION,
            "conversations": [c.to_json() for c in conversations],
            "messages": [m.to_json() for m in messages],
            "toolEvents": tool_events,
            "geminiThoughtSigs": signatures,
        }
        return json.dumps(doc, ensure_ascii=False).encode("utf-8")

    def build_file_trees(self) -> list[tuple[str, Path]]:
        """Every regular file under the three roots, as ``(archive_path, file)``."""
        entries: list[tuple[str, Path]] = []
        for prefix, root in self.directories.trees():
            for rel, file in iter_tree(root):
                entries.append((f"{prefix}/{rel}", file))
        return entries

    def build_entries(self, cfg: WebDavConfig) -> list[ArchiveEntry]:
        entries: list[ArchiveEntry] = [
            (SETTINGS_MEMBER, self.build_settings_blob())
        ]
        if cfg.include_chats:
            entries.append((CHATS_MEMBER, self.build_chats_blob()))
        if cfg.include_files:
            entries.extend(self.build_file_trees())
        return entries

    def build_archive(self, cfg: WebDavConfig) -> bytes:
        """Pack a full snapshot, honouring the config's export toggles."""
        return pack(self.build_entries(cfg))
