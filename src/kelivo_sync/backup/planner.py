"""Apply an unpacked backup archive to live local state.

The ``RestorePlanner`` runs three phases in a fixed order, each gated by its
own ``RestoreAction``:

1. Settings & providers -- every incoming key is routed to the providers or
   settings category and then ignored, overwritten, or merged through the
   strategy table in ``mergers``.
2. Chats -- overwrite clears and reloads; merge inserts unknown
   conversations and appends unknown messages.
3. Files -- overwrite replaces each tree wholesale; merge copies only files
   that do not exist locally.

Phases are independent: a failing phase is logged, recorded in the report,
and the next phase still runs.  When every category is ``overwrite`` the
legacy full-overwrite path is taken; it is a thin adapter over the same
overwrite branches.

Destination writes are staged: merged files are copied to a temp sibling
and promoted with ``os.replace``; overwritten trees are built beside the
destination and swapped in.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .archive import iter_tree, unpack
from .mergers import category_for_key, merge_setting
from .models import (
    Category,
    CategoryResult,
    RestoreAction,
    RestoreOptions,
    RestoreReport,
    WebDavConfig,
)
from .snapshot import CHATS_MEMBER, SETTINGS_MEMBER
from .stores import (
    LOCAL_ONLY_KEYS,
    AppDirectories,
    ChatMessage,
    ChatService,
    Conversation,
    SettingsStore,
)

logger = logging.getLogger(__name__)


@dataclass
class ChatArchive:
    """Decoded contents of ``chats.json``."""

    conversations: list[Conversation] = field(default_factory=list)
    messages: list[ChatMessage] = field(default_factory=list)
    tool_events: dict[str, list[dict]] = field(default_factory=dict)
    signatures: dict[str, str] = field(default_factory=dict)

    def messages_by_conversation(
        self, exclude: set[str] | None = None
    ) -> dict[str, list[ChatMessage]]:
        """Group messages by conversation id, skipping ids in *exclude*."""
        seen = set(exclude or ())
        grouped: dict[str, list[ChatMessage]] = {}
        for message in self.messages:
            if message.id in seen:
                continue
            seen.add(message.id)
            grouped.setdefault(message.conversation_id, []).append(message)
        return grouped


def load_chat_archive(path: Path) -> ChatArchive:
    """Parse ``chats.json``; missing sections are treated as empty.

    Raises:
        ValueError: If the document or any entry is malformed.
    """
    with open(path, encoding="utf-8") as fh:
        doc = json.load(fh)
    if not isinstance(doc, dict):
        raise ValueError("chats.json root must be an object")

    tool_events: dict[str, list[dict]] = {}
    for key, events in (doc.get("toolEvents") or {}).items():
        tool_events[str(key)] = [dict(e) for e in events]

    return ChatArchive(
        conversations=[
            Conversation.model_validate(c)
            for c in doc.get("conversations") or []
        ],
        messages=[
            ChatMessage.model_validate(m) for m in doc.get("messages") or []
        ],
        tool_events=tool_events,
        signatures={
            str(k): str(v)
            for k, v in (doc.get("geminiThoughtSigs") or {}).items()
        },
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RestorePlanner:
    """Restore an archive into the given collaborators.

    Args:
        settings: Settings store to write into.
        chats: Chat service to write into.
        directories: File roots to restore trees into.
        temp_root: Parent for staging directories (system temp if None).
    """

    def __init__(
        self,
        settings: SettingsStore,
        chats: ChatService,
        directories: AppDirectories,
        temp_root: Path | None = None,
    ) -> None:
        self.settings = settings
        self.chats = chats
        self.directories = directories
        self.temp_root = temp_root

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def restore_archive(
        self,
        archive: bytes | Path,
        cfg: WebDavConfig,
        options: RestoreOptions,
        source: str = "",
    ) -> RestoreReport:
        """Unpack *archive* into a staging directory and restore from it.

        The staging directory is removed on every exit path; removal
        failures are ignored.

        Raises:
            ArchiveCorrupt: If the archive cannot be unpacked.
        """
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix="kelivo_restore_",
            dir=self.temp_root,
            ignore_cleanup_errors=True,
        ) as tmp:
            staging = unpack(archive, Path(tmp))
            return self.restore_staged(staging, cfg, options, source)

    def restore_staged(
        self,
        staging: Path,
        cfg: WebDavConfig,
        options: RestoreOptions,
        source: str = "",
    ) -> RestoreReport:
        """Restore from an already unpacked archive."""
        if options.is_full_overwrite:
            return self.restore_full_overwrite(staging, cfg, source)

        started_at = _now()
        warnings: list[str] = []
        categories = self._restore_settings(
            staging, options.settings_action, options.providers_action
        )
        categories.append(
            self._restore_chats(staging, cfg, options.chats_action)
        )
        categories.append(
            self._restore_files(staging, cfg, options.files_action, warnings)
        )
        return RestoreReport(
            source=source,
            full_overwrite=False,
            categories=categories,
            warnings=warnings,
            started_at=started_at,
            completed_at=_now(),
        )

    def restore_full_overwrite(
        self, staging: Path, cfg: WebDavConfig, source: str = ""
    ) -> RestoreReport:
        """Legacy all-or-nothing restore.

        Every setting from the archive replaces the local value, chats are
        cleared and reloaded when present, and every file tree present in
        the archive replaces its destination.
        """
        started_at = _now()
        warnings: list[str] = []
        overwrite = RestoreAction.OVERWRITE
        categories = self._restore_settings(staging, overwrite, overwrite)
        categories.append(self._restore_chats(staging, cfg, overwrite))
        categories.append(
            self._restore_files(staging, cfg, overwrite, warnings)
        )
        return RestoreReport(
            source=source,
            full_overwrite=True,
            categories=categories,
            warnings=warnings,
            started_at=started_at,
            completed_at=_now(),
        )

    # ------------------------------------------------------------------
    # Settings & providers
    # ------------------------------------------------------------------

    def _restore_settings(
        self,
        staging: Path,
        settings_action: RestoreAction,
        providers_action: RestoreAction,
    ) -> list[CategoryResult]:
        actions = {
            Category.SETTINGS: settings_action,
            Category.PROVIDERS: providers_action,
        }
        path = staging / SETTINGS_MEMBER
        if not path.exists() or all(
            a == RestoreAction.IGNORE for a in actions.values()
        ):
            return [
                CategoryResult(category=c, action=a, applied=False)
                for c, a in actions.items()
            ]

        counts = {c: Counter() for c in actions}
        try:
            with open(path, encoding="utf-8") as fh:
                incoming = json.load(fh)
            if not isinstance(incoming, dict):
                raise ValueError("settings.json root must be an object")

            if all(a == RestoreAction.OVERWRITE for a in actions.values()):
                self._overwrite_settings(incoming, counts)
            else:
                self._apply_settings(incoming, actions, counts)
        except Exception as exc:
            logger.error("Settings restore failed: %s", exc)
            return [
                CategoryResult(
                    category=c,
                    action=a,
                    applied=a != RestoreAction.IGNORE,
                    success=False,
                    error=str(exc),
                    counts=dict(counts[c]),
                )
                for c, a in actions.items()
            ]

        return [
            CategoryResult(
                category=c,
                action=a,
                applied=a != RestoreAction.IGNORE,
                counts=dict(counts[c]),
            )
            for c, a in actions.items()
        ]

    def _overwrite_settings(
        self, incoming: dict[str, Any], counts: dict[Category, Counter]
    ) -> None:
        data = {
            k: v for k, v in incoming.items() if k not in LOCAL_ONLY_KEYS
        }
        self.settings.restore_all(data)
        for key in data:
            counts[category_for_key(key)]["written"] += 1

    def _apply_settings(
        self,
        incoming: dict[str, Any],
        actions: dict[Category, RestoreAction],
        counts: dict[Category, Counter],
    ) -> None:
        existing = self.settings.snapshot()
        for key, value in incoming.items():
            if key in LOCAL_ONLY_KEYS:
                continue
            category = category_for_key(key)
            action = actions[category]
            if action == RestoreAction.IGNORE:
                continue
            if action == RestoreAction.OVERWRITE:
                self.settings.restore_single(key, value)
                counts[category]["written"] += 1
                continue
            write, merged = merge_setting(existing, key, value)
            if write:
                self.settings.restore_single(key, merged)
                counts[category]["written"] += 1
            else:
                counts[category]["kept"] += 1

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def _restore_chats(
        self, staging: Path, cfg: WebDavConfig, action: RestoreAction
    ) -> CategoryResult:
        path = staging / CHATS_MEMBER
        if (
            action == RestoreAction.IGNORE
            or not cfg.include_chats
            or not path.exists()
        ):
            return CategoryResult(
                category=Category.CHATS, action=action, applied=False
            )

        counts: Counter = Counter()
        try:
            archive = load_chat_archive(path)
            if action == RestoreAction.OVERWRITE:
                self._overwrite_chats(archive, counts)
            else:
                self._merge_chats(archive, counts)
        except Exception as exc:
            logger.error("Chat restore failed: %s", exc)
            return CategoryResult(
                category=Category.CHATS,
                action=action,
                success=False,
                error=str(exc),
                counts=dict(counts),
            )
        return CategoryResult(
            category=Category.CHATS, action=action, counts=dict(counts)
        )

    def _overwrite_chats(self, archive: ChatArchive, counts: Counter) -> None:
        self.chats.clear_all_data()
        grouped = archive.messages_by_conversation()
        for conversation in archive.conversations:
            messages = grouped.get(conversation.id, [])
            self.chats.restore_conversation(conversation, messages)
            counts["conversations_added"] += 1
            counts["messages_added"] += len(messages)
        for message_id, events in archive.tool_events.items():
            self._set_tool_events(message_id, events, counts)
        for message_id, signature in archive.signatures.items():
            self._set_signature(message_id, signature, counts)

    def _merge_chats(self, archive: ChatArchive, counts: Counter) -> None:
        existing = self.chats.get_all_conversations()
        existing_conversations = {c.id for c in existing}
        # Message ids are unique across conversations.
        existing_messages: set[str] = set()
        for conversation in existing:
            existing_messages.update(
                m.id for m in self.chats.get_messages(conversation.id)
            )

        grouped = archive.messages_by_conversation(exclude=existing_messages)
        for conversation in archive.conversations:
            new_messages = grouped.pop(conversation.id, [])
            if conversation.id not in existing_conversations:
                self.chats.restore_conversation(conversation, new_messages)
                existing_conversations.add(conversation.id)
                counts["conversations_added"] += 1
                counts["messages_added"] += len(new_messages)
                continue
            for message in new_messages:
                self.chats.add_message_directly(conversation.id, message)
                counts["messages_added"] += 1

        for message_id, events in archive.tool_events.items():
            if not self.chats.get_tool_events(message_id):
                self._set_tool_events(message_id, events, counts)
        for message_id, signature in archive.signatures.items():
            if not self.chats.get_gemini_thought_signature(message_id):
                self._set_signature(message_id, signature, counts)

    def _set_tool_events(
        self, message_id: str, events: list[dict], counts: Counter
    ) -> None:
        try:
            self.chats.set_tool_events(message_id, events)
            counts["tool_events_set"] += 1
        except Exception as exc:
            logger.warning(
                "Could not restore tool events for %s: %s", message_id, exc
            )

    def _set_signature(
        self, message_id: str, signature: str, counts: Counter
    ) -> None:
        try:
            self.chats.set_gemini_thought_signature(message_id, signature)
            counts["signatures_set"] += 1
        except Exception as exc:
            logger.warning(
                "Could not restore thought signature for %s: %s",
                message_id,
                exc,
            )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _restore_files(
        self,
        staging: Path,
        cfg: WebDavConfig,
        action: RestoreAction,
        warnings: list[str],
    ) -> CategoryResult:
        if action == RestoreAction.IGNORE or not cfg.include_files:
            return CategoryResult(
                category=Category.FILES, action=action, applied=False
            )

        counts: Counter = Counter()
        try:
            for name, destination in self.directories.trees():
                source = staging / name
                if not source.is_dir():
                    continue
                if action == RestoreAction.OVERWRITE:
                    self._overwrite_tree(source, destination, counts, warnings)
                else:
                    self._merge_tree(source, destination, counts, warnings)
        except Exception as exc:
            logger.error("File restore failed: %s", exc)
            return CategoryResult(
                category=Category.FILES,
                action=action,
                success=False,
                error=str(exc),
                counts=dict(counts),
            )
        return CategoryResult(
            category=Category.FILES, action=action, counts=dict(counts)
        )

    def _overwrite_tree(
        self,
        source: Path,
        destination: Path,
        counts: Counter,
        warnings: list[str],
    ) -> None:
        """Replace *destination* with a copy of *source*.

        The new tree is assembled in a sibling directory and swapped in
        once complete.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        replacement = Path(
            tempfile.mkdtemp(
                prefix=f".{destination.name}.restore-",
                dir=destination.parent,
            )
        )
        retired = None
        try:
            for rel, file in iter_tree(source):
                target = replacement / rel
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copyfile(file, target)
                    counts["files_copied"] += 1
                except OSError as exc:
                    self._copy_failed(destination / rel, exc, counts, warnings)

            if destination.exists():
                retired = replacement.with_name(
                    replacement.name.replace(".restore-", ".retired-")
                )
                os.replace(destination, retired)
            os.replace(replacement, destination)
        except BaseException:
            if retired is not None and not destination.exists():
                os.replace(retired, destination)
            shutil.rmtree(replacement, ignore_errors=True)
            raise
        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)
        logger.info("Replaced %s from backup", destination)

    def _merge_tree(
        self,
        source: Path,
        destination: Path,
        counts: Counter,
        warnings: list[str],
    ) -> None:
        """Copy files from *source* that do not exist under *destination*."""
        destination.mkdir(parents=True, exist_ok=True)
        for rel, file in iter_tree(source):
            target = destination / rel
            if target.exists():
                counts["files_kept"] += 1
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                copy_file_staged(file, target)
                counts["files_copied"] += 1
            except OSError as exc:
                self._copy_failed(target, exc, counts, warnings)

    @staticmethod
    def _copy_failed(
        target: Path,
        exc: OSError,
        counts: Counter,
        warnings: list[str],
    ) -> None:
        logger.warning("Could not restore %s: %s", target, exc)
        counts["files_failed"] += 1
        warnings.append(f"{target}: {exc}")


def copy_file_staged(source: Path, target: Path) -> None:
    """Copy *source* to a temp sibling of *target*, then promote it."""
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    os.close(fd)
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
